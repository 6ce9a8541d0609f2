# Copyright 2024 inuex35
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""GPS time representation and week rollover helpers"""

from datetime import datetime, timedelta
from typing import Tuple

from .constants import GPST0, SECONDS_IN_WEEK


class GpsTime:
    """GPS week and time of week

    The time of week is normalized into [0, 604800) on construction, with
    the week number carried accordingly.
    """

    def __init__(self, week: int = 0, tow: float = 0.0):
        self.week = int(week)
        self.tow = float(tow)

        while self.tow >= SECONDS_IN_WEEK:
            self.week += 1
            self.tow -= SECONDS_IN_WEEK
        while self.tow < 0:
            self.week -= 1
            self.tow += SECONDS_IN_WEEK

    @classmethod
    def from_gps_nanos(cls, gps_nanos: int) -> 'GpsTime':
        """Create GpsTime from nanoseconds since the GPS epoch"""
        week, tow_nanos = divmod(int(gps_nanos), SECONDS_IN_WEEK * 1_000_000_000)
        return cls(week, tow_nanos * 1e-9)

    def to_datetime(self) -> datetime:
        """Convert to datetime object (GPS time scale, no leap seconds)"""
        return datetime(*GPST0) + timedelta(weeks=self.week, seconds=self.tow)

    @property
    def day_of_year(self) -> int:
        """Day of year in 1..366"""
        return self.to_datetime().timetuple().tm_yday

    def __repr__(self):
        return f"GpsTime(week={self.week}, tow={self.tow:.9f})"


def adjust_week_rollover(tow: float, week: int) -> Tuple[float, int]:
    """
    Bring a time of week that crossed a week boundary back into range

    Parameters:
    -----------
    tow : float
        Time of week in seconds, possibly slightly outside [0, 604800]
    week : int
        Week number the time of week refers to

    Returns:
    --------
    tuple : (tow, week)
        Time of week and week number after at most one week of correction
    """
    if tow < 0.0:
        return tow + SECONDS_IN_WEEK, week - 1
    if tow > SECONDS_IN_WEEK:
        return tow - SECONDS_IN_WEEK, week + 1
    return tow, week
