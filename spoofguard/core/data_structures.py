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

"""Core data structures for measurement processing and positioning"""

from collections.abc import Mapping
from dataclasses import dataclass, field, replace
from typing import Iterable, Iterator, List, Optional, Tuple

import numpy as np

from .constants import FREQ_L1, MAX_PRN


@dataclass(frozen=True)
class GnssClock:
    """Receiver clock snapshot captured with a measurement batch.

    Attributes
    ----------
    time_nanos : int
        Hardware clock reading in nanoseconds
    full_bias_nanos : int
        Difference between the hardware clock and GPS time, negative once
        the receiver has resolved GPS time
    bias_nanos : float
        Sub-nanosecond part of the clock bias
    drift_nanos_per_second : float
        Clock drift estimate
    hardware_clock_discontinuity_count : int
        Incremented each time the hardware clock restarts
    """
    time_nanos: int
    full_bias_nanos: int
    bias_nanos: float = 0.0
    drift_nanos_per_second: float = 0.0
    hardware_clock_discontinuity_count: int = 0


@dataclass(frozen=True)
class RawMeasurement:
    """Raw ranging measurement for one satellite as reported by the receiver"""
    svid: int
    constellation_type: int
    state: int
    received_sv_time_nanos: int
    received_sv_time_uncertainty_nanos: float
    cn0_dbhz: float
    pseudorange_rate_mps: float
    pseudorange_rate_uncertainty_mps: float
    time_offset_nanos: float = 0.0
    accumulated_delta_range_m: float = 0.0
    accumulated_delta_range_state: int = 0
    accumulated_delta_range_uncertainty_m: float = 0.0
    carrier_frequency_hz: float = FREQ_L1


@dataclass(frozen=True)
class RawMeasurementBatch:
    """All measurements delivered by one receiver measurement event"""
    clock: GnssClock
    measurements: Tuple[RawMeasurement, ...] = ()

    def __post_init__(self):
        object.__setattr__(self, 'measurements', tuple(self.measurements))


@dataclass(frozen=True)
class PseudorangeMeasurement:
    """Pseudorange and pseudorange rate for one satellite.

    Attributes
    ----------
    prn : int
        GPS satellite number (1..32)
    pseudorange_m : float
        Pseudorange in meters
    pseudorange_uncertainty_m : float
        One-sigma pseudorange uncertainty in meters, strictly positive
    pseudorange_rate_mps : float
        Pseudorange rate in m/s
    pseudorange_rate_uncertainty_mps : float
        One-sigma pseudorange rate uncertainty in m/s, strictly positive
    """
    prn: int
    pseudorange_m: float
    pseudorange_uncertainty_m: float
    pseudorange_rate_mps: float = 0.0
    pseudorange_rate_uncertainty_mps: float = 1.0

    def __post_init__(self):
        if not 1 <= self.prn <= MAX_PRN:
            raise ValueError(f"PRN must be in 1..{MAX_PRN}, got {self.prn}")
        if not self.pseudorange_uncertainty_m > 0:
            raise ValueError(f"PRN {self.prn}: pseudorange uncertainty must be positive")
        if not self.pseudorange_rate_uncertainty_mps > 0:
            raise ValueError(f"PRN {self.prn}: pseudorange rate uncertainty must be positive")


class MeasurementSet(Mapping):
    """Pseudorange measurements keyed by PRN.

    A satellite is either present with a measurement or absent. Iteration
    yields PRNs in ascending order so every derived matrix has a stable row
    order.
    """

    def __init__(self, measurements: Iterable[PseudorangeMeasurement] = ()):
        self._by_prn = {}
        for meas in measurements:
            if meas.prn in self._by_prn:
                raise ValueError(f"Duplicate measurement for PRN {meas.prn}")
            self._by_prn[meas.prn] = meas

    def __getitem__(self, prn: int) -> PseudorangeMeasurement:
        return self._by_prn[prn]

    def __iter__(self) -> Iterator[int]:
        return iter(sorted(self._by_prn))

    def __len__(self) -> int:
        return len(self._by_prn)

    def __repr__(self):
        return f"MeasurementSet(prns={self.prns})"

    @property
    def prns(self) -> List[int]:
        return sorted(self._by_prn)

    def without(self, prns: Iterable[int]) -> 'MeasurementSet':
        """New set with the given PRNs removed"""
        drop = set(prns)
        return MeasurementSet(m for prn, m in self.items() if prn not in drop)

    def to_slots(self) -> List[Optional[PseudorangeMeasurement]]:
        """Fixed-size list indexed by PRN - 1, None for absent satellites"""
        return [self._by_prn.get(prn) for prn in range(1, MAX_PRN + 1)]


@dataclass(frozen=True)
class PreprocessedEpoch:
    """Validated measurements together with the epoch time base"""
    measurements: MeasurementSet
    receiver_tow_s: float
    week_number: int
    day_of_year: int
    arrival_time_since_gps_epoch_ns: int = 0
    week_rollover_corrected: bool = False

    def with_measurements(self, measurements: MeasurementSet) -> 'PreprocessedEpoch':
        return replace(self, measurements=measurements)


@dataclass
class SatelliteState:
    """Satellite position, velocity and clock at a transmit time"""
    position_ecef: np.ndarray
    velocity_ecef: np.ndarray = field(default_factory=lambda: np.zeros(3))
    clock_correction_m: float = 0.0
    clock_rate_mps: float = 0.0


@dataclass
class ReceiverState:
    """Receiver position, clock bias, velocity and clock bias rate in ECEF"""
    position_ecef: np.ndarray = field(default_factory=lambda: np.zeros(3))
    clock_bias_m: float = 0.0
    velocity_ecef: np.ndarray = field(default_factory=lambda: np.zeros(3))
    clock_bias_rate_mps: float = 0.0

    def copy(self) -> 'ReceiverState':
        return ReceiverState(np.array(self.position_ecef, dtype=float),
                             float(self.clock_bias_m),
                             np.array(self.velocity_ecef, dtype=float),
                             float(self.clock_bias_rate_mps))

    def as_vector(self) -> np.ndarray:
        """[x, y, z, clock_bias, vx, vy, vz, clock_bias_rate]"""
        return np.concatenate([self.position_ecef, [self.clock_bias_m],
                               self.velocity_ecef, [self.clock_bias_rate_mps]])


@dataclass(frozen=True, eq=False)
class SolutionResidualSet:
    """Snapshot of one least squares fit: satellites, residuals and covariance"""
    prns: Tuple[int, ...]
    satellite_positions_ecef: np.ndarray
    residuals_m: np.ndarray
    covariance_m2: np.ndarray

    def __post_init__(self):
        object.__setattr__(self, 'prns', tuple(self.prns))
        for name in ('satellite_positions_ecef', 'residuals_m', 'covariance_m2'):
            array = np.array(getattr(self, name), dtype=float)
            array.setflags(write=False)
            object.__setattr__(self, name, array)

    def residual_for(self, prn: int) -> float:
        return float(self.residuals_m[self.prns.index(prn)])

    def residual_slots(self) -> np.ndarray:
        """Residuals in a 32-slot array indexed by PRN - 1, NaN where absent"""
        slots = np.full(MAX_PRN, np.nan)
        for prn, res in zip(self.prns, self.residuals_m):
            slots[prn - 1] = res
        return slots


@dataclass
class DilutionOfPrecision:
    gdop: float
    pdop: float
    hdop: float
    vdop: float
    tdop: float


def _nan_vector(size: int = 3) -> np.ndarray:
    return np.full(size, np.nan)


@dataclass
class EpochSolution:
    """Per-epoch output of the positioning pipeline.

    A failed epoch is reported with every numeric field set to NaN, see
    ``EpochSolution.nan``.
    """
    receiver_state: ReceiverState
    latitude_deg: float
    longitude_deg: float
    altitude_m: float
    velocity_enu_mps: np.ndarray = field(default_factory=_nan_vector)
    position_uncertainty_enu_m: np.ndarray = field(default_factory=_nan_vector)
    velocity_uncertainty_enu_mps: np.ndarray = field(default_factory=_nan_vector)
    pseudorange_residuals_m: np.ndarray = field(default_factory=lambda: _nan_vector(MAX_PRN))
    reference_residuals_m: np.ndarray = field(default_factory=lambda: _nan_vector(MAX_PRN))
    used_prns: Tuple[int, ...] = ()
    outlier_prns: Tuple[int, ...] = ()
    spoofed_prns: Tuple[int, ...] = ()
    dop: Optional[DilutionOfPrecision] = None
    iterations: int = 0

    @classmethod
    def nan(cls) -> 'EpochSolution':
        state = ReceiverState(_nan_vector(), np.nan, _nan_vector(), np.nan)
        return cls(state, np.nan, np.nan, np.nan)

    @property
    def is_valid(self) -> bool:
        return bool(np.isfinite(self.latitude_deg))


@dataclass
class FusedState:
    """Kalman-corrected position and velocity in the local ENU frame"""
    position_enu_m: np.ndarray = field(default_factory=lambda: np.zeros(3))
    velocity_enu_mps: np.ndarray = field(default_factory=lambda: np.zeros(3))
    covariance: np.ndarray = field(default_factory=lambda: np.eye(6))

    def as_vector(self) -> np.ndarray:
        return np.concatenate([self.position_enu_m, self.velocity_enu_mps])


@dataclass(frozen=True, eq=False)
class ReferencePosition:
    """Trusted receiver position used for spoofing residuals.

    Attributes
    ----------
    latitude_deg, longitude_deg : float
        Geodetic coordinates in degrees
    altitude_m : float
        Height above the WGS84 ellipsoid in meters
    ecef : np.ndarray
        Same position in ECEF meters
    """
    latitude_deg: float
    longitude_deg: float
    altitude_m: float
    ecef: np.ndarray

    @property
    def llh(self) -> np.ndarray:
        """[lat (rad), lon (rad), height (m)]"""
        return np.array([np.radians(self.latitude_deg), np.radians(self.longitude_deg),
                         self.altitude_m])


@dataclass
class ImuSample:
    """Inertial sample in the local ENU frame.

    Either a linear acceleration (integrated over the time since the
    previous sample) or an externally pre-integrated delta velocity with its
    integration interval.
    """
    timestamp_s: float
    acceleration_enu: Optional[np.ndarray] = None
    delta_velocity_enu: Optional[np.ndarray] = None
    delta_time_s: Optional[float] = None

    def __post_init__(self):
        if (self.acceleration_enu is None) == (self.delta_velocity_enu is None):
            raise ValueError("Provide exactly one of acceleration_enu or delta_velocity_enu")
        if self.delta_velocity_enu is not None and self.delta_time_s is None:
            raise ValueError("delta_time_s is required with delta_velocity_enu")
