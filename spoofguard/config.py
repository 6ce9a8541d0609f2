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

"""Configuration for the positioning pipeline"""

from dataclasses import asdict, dataclass, field, fields
from typing import Any, Dict, Optional, Tuple

from .core.constants import (
    ATMOSPHERIC_CORRECTION_THRESHOLD_M,
    AVERAGE_TRAVEL_TIME_S,
    CONSTELLATION_GPS,
    COVARIANCE_DETERMINANT_TOLERANCE,
    FUSION_MEASUREMENT_NOISE,
    FUSION_PROCESS_NOISE,
    IMU_SETTLING_SAMPLES,
    LEAST_SQUARES_TOLERANCE_M,
    MAX_LEAST_SQUARES_ITERATIONS,
    MAX_PRR_UNCERTAINTY_MPS,
    MAX_ROLLOVER_RESIDUAL_S,
    MAX_TOW_UNCERTAINTY_NS,
    MIN_CN0_DBHZ,
    MIN_SATELLITES,
    OUTLIER_RESIDUAL_THRESHOLD_M,
    SPOOFING_RESIDUAL_LIMIT_M,
    SPOOFING_WARMUP_EPOCHS,
    STATE_CODE_LOCK,
    STATE_TOW_DECODED,
)

UNCERTAINTY_MODELS = ('cn0', 'time')


@dataclass
class PreprocessorConfig:
    """Validity thresholds for raw measurements"""
    max_tow_uncertainty_ns: float = MAX_TOW_UNCERTAINTY_NS
    max_prr_uncertainty_mps: float = MAX_PRR_UNCERTAINTY_MPS
    min_cn0_dbhz: float = MIN_CN0_DBHZ
    constellation_type: int = CONSTELLATION_GPS
    required_state_bits: int = STATE_CODE_LOCK | STATE_TOW_DECODED
    average_travel_time_s: float = AVERAGE_TRAVEL_TIME_S
    max_rollover_residual_s: float = MAX_ROLLOVER_RESIDUAL_S
    uncertainty_model: str = 'cn0'  # 'cn0' (DLL noise model) or 'time' (reported uncertainty)

    def __post_init__(self):
        if self.uncertainty_model not in UNCERTAINTY_MODELS:
            raise ValueError(f"Unknown uncertainty model: {self.uncertainty_model}. "
                             f"Must be one of {UNCERTAINTY_MODELS}")


@dataclass
class SolverConfig:
    """Weighted least squares iteration and rejection parameters"""
    min_satellites: int = MIN_SATELLITES
    convergence_tolerance_m: float = LEAST_SQUARES_TOLERANCE_M
    max_iterations: int = MAX_LEAST_SQUARES_ITERATIONS
    atmospheric_threshold_m: float = ATMOSPHERIC_CORRECTION_THRESHOLD_M
    outlier_threshold_m: float = OUTLIER_RESIDUAL_THRESHOLD_M
    determinant_tolerance: float = COVARIANCE_DETERMINANT_TOLERANCE
    atmospheric_corrections: bool = True
    default_elevation_above_sea_level_m: float = 0.0

    def __post_init__(self):
        if self.min_satellites < 4:
            raise ValueError("A 3D fix with clock bias needs at least 4 satellites")


@dataclass
class SpoofingConfig:
    """Reference residual filter settings.

    With ``estimate_common_mode`` the median reference residual of the epoch
    is taken as the receiver clock term and exclusions test the deviation
    from it; otherwise the residuals against the last solved clock bias are
    tested directly.
    """
    enabled: bool = False
    residual_limit_m: float = SPOOFING_RESIDUAL_LIMIT_M
    warmup_epochs: int = SPOOFING_WARMUP_EPOCHS
    estimate_common_mode: bool = True


@dataclass
class FusionConfig:
    """Kalman filter noise settings.

    ``process_noise`` holds the diagonal of Q for [E, N, U, vE, vN, vU].
    """
    process_noise: Tuple[float, ...] = tuple(FUSION_PROCESS_NOISE)
    measurement_noise: float = FUSION_MEASUREMENT_NOISE
    initial_covariance: float = 1.0
    anchor_at_reference: bool = False

    def __post_init__(self):
        self.process_noise = tuple(float(q) for q in self.process_noise)
        if len(self.process_noise) != 6:
            raise ValueError(f"process_noise needs 6 entries, got {len(self.process_noise)}")


@dataclass
class DeadReckoningConfig:
    settling_samples: int = IMU_SETTLING_SAMPLES


_SECTIONS = {
    'preprocessor': PreprocessorConfig,
    'solver': SolverConfig,
    'spoofing': SpoofingConfig,
    'fusion': FusionConfig,
    'dead_reckoning': DeadReckoningConfig,
}


def _section_from_dict(cls, values: Dict[str, Any]):
    known = {f.name for f in fields(cls)}
    unknown = set(values) - known
    if unknown:
        raise ValueError(f"Unknown {cls.__name__} keys: {sorted(unknown)}")
    return cls(**values)


@dataclass
class PositioningConfig:
    """Complete pipeline configuration"""
    preprocessor: PreprocessorConfig = field(default_factory=PreprocessorConfig)
    solver: SolverConfig = field(default_factory=SolverConfig)
    spoofing: SpoofingConfig = field(default_factory=SpoofingConfig)
    fusion: FusionConfig = field(default_factory=FusionConfig)
    dead_reckoning: DeadReckoningConfig = field(default_factory=DeadReckoningConfig)
    discard_first_epoch: bool = False
    logging: Optional[Dict[str, Any]] = None

    @classmethod
    def from_dict(cls, config: Dict[str, Any]) -> 'PositioningConfig':
        """
        Build configuration from a (possibly partial) nested dictionary

        Example config:
        {
            'solver': {'outlier_threshold_m': 30.0},
            'spoofing': {'enabled': True},
            'discard_first_epoch': True,
            'logging': {'default_level': 'DEBUG'}
        }
        """
        kwargs = {}
        for key, value in config.items():
            if key in _SECTIONS:
                kwargs[key] = _section_from_dict(_SECTIONS[key], value)
            elif key in ('discard_first_epoch', 'logging'):
                kwargs[key] = value
            else:
                raise ValueError(f"Unknown configuration section: {key}")
        return cls(**kwargs)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)
