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

"""Error kinds raised by the positioning pipeline"""

from enum import Enum
from typing import Optional


class ErrorKind(Enum):
    """Classification of per-epoch failures"""
    TIME_BASE = "time_base"
    INSUFFICIENT_SATELLITES = "insufficient_satellites"
    CONVERGENCE = "convergence"
    SINGULAR_COVARIANCE = "singular_covariance"
    EPHEMERIS_NOT_FOUND = "ephemeris_not_found"

    @property
    def is_skippable(self) -> bool:
        """True for expected empty results, False for epoch-fatal failures"""
        return self in (ErrorKind.INSUFFICIENT_SATELLITES,
                        ErrorKind.EPHEMERIS_NOT_FOUND)


class PositioningError(Exception):
    """Base class for pipeline errors"""
    kind: ErrorKind = None


class TimeBaseError(PositioningError):
    """Week rollover correction left an implausible travel time"""
    kind = ErrorKind.TIME_BASE


class InsufficientSatellitesError(PositioningError):
    """Fewer usable satellites than a 3D fix requires"""
    kind = ErrorKind.INSUFFICIENT_SATELLITES

    def __init__(self, available: int = 0, required: int = 4,
                 message: Optional[str] = None):
        super().__init__(message or f"{available} usable satellites, at least {required} required")
        self.available = available
        self.required = required


class ConvergenceError(PositioningError):
    """Least squares iteration cap reached"""
    kind = ErrorKind.CONVERGENCE


class SingularCovarianceError(PositioningError):
    kind = ErrorKind.SINGULAR_COVARIANCE


class EphemerisNotFoundError(PositioningError):
    kind = ErrorKind.EPHEMERIS_NOT_FOUND

    def __init__(self, prn: int = 0, message: Optional[str] = None):
        super().__init__(message or f"No ephemeris for PRN {prn}")
        self.prn = prn


_ERRORS_BY_KIND = {
    ErrorKind.TIME_BASE: TimeBaseError,
    ErrorKind.INSUFFICIENT_SATELLITES: InsufficientSatellitesError,
    ErrorKind.CONVERGENCE: ConvergenceError,
    ErrorKind.SINGULAR_COVARIANCE: SingularCovarianceError,
    ErrorKind.EPHEMERIS_NOT_FOUND: EphemerisNotFoundError,
}


def error_for_kind(kind: ErrorKind, message: str) -> PositioningError:
    """Build the exception instance matching an error kind"""
    error_class = _ERRORS_BY_KIND[kind]
    if error_class in (InsufficientSatellitesError, EphemerisNotFoundError):
        return error_class(message=message)
    return error_class(message)
