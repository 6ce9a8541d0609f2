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

"""Dead reckoning of ENU position and velocity from IMU samples"""

import logging
from typing import Optional

import numpy as np

from ..config import DeadReckoningConfig
from ..core.data_structures import ImuSample

logger = logging.getLogger(__name__)


class DeadReckoning:
    """
    Integrate linear acceleration into velocity and position

    The first ``settling_samples`` acceleration samples only establish the
    time base. Pre-integrated delta velocity samples carry their own
    interval and are used immediately.
    """

    def __init__(self, config: Optional[DeadReckoningConfig] = None):
        self.config = config or DeadReckoningConfig()
        self.reset()

    def reset(self):
        """Zero position and velocity and restart the settling period"""
        self.position_enu = np.zeros(3)
        self.velocity_enu = np.zeros(3)
        self.last_timestamp: Optional[float] = None
        self.samples_seen = 0

    @property
    def settled(self) -> bool:
        return self.samples_seen > self.config.settling_samples

    def propagate(self, sample: ImuSample) -> bool:
        """
        Integrate one sample

        Parameters
        ----------
        sample : ImuSample
            Acceleration or delta velocity in ENU

        Returns
        -------
        bool
            True if the sample changed the state

        Raises
        ------
        ValueError
            If the timestamp is older than the previous sample
        """
        if self.last_timestamp is not None and sample.timestamp_s < self.last_timestamp:
            raise ValueError(f"IMU sample at {sample.timestamp_s} s is older than "
                             f"the previous one at {self.last_timestamp} s")

        if sample.delta_velocity_enu is not None:
            dt = float(sample.delta_time_s)
            dv = np.asarray(sample.delta_velocity_enu, dtype=float)
        else:
            self.samples_seen += 1
            previous = self.last_timestamp
            self.last_timestamp = sample.timestamp_s
            if previous is None or not self.settled:
                return False
            dt = sample.timestamp_s - previous
            dv = np.asarray(sample.acceleration_enu, dtype=float) * dt

        self.last_timestamp = sample.timestamp_s
        self.velocity_enu = self.velocity_enu + dv
        self.position_enu = self.position_enu + self.velocity_enu * dt
        return True

    def state_vector(self) -> np.ndarray:
        """[E, N, U, vE, vN, vU]"""
        return np.concatenate([self.position_enu, self.velocity_enu])

    def overwrite(self, state: np.ndarray):
        """Replace position and velocity with a corrected state"""
        state = np.asarray(state, dtype=float)
        self.position_enu = state[:3].copy()
        self.velocity_enu = state[3:6].copy()
        logger.debug("Dead reckoning reset to %s", np.round(state, 3))
