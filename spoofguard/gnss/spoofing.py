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

"""Spoofing detection from residuals against a trusted position"""

import logging
from dataclasses import dataclass, field
from typing import Dict, Optional, Tuple

import numpy as np

from ..config import SpoofingConfig
from ..core.constants import CLIGHT, MAX_PRN, MIN_SATELLITES
from ..core.data_structures import PreprocessedEpoch, ReceiverState, ReferencePosition
from ..core.errors import EphemerisNotFoundError
from .atmosphere import AtmosphericCorrector
from .ephemeris import EphemerisProvider, satellite_state_at_transmit
from .wls import predicted_pseudorange

logger = logging.getLogger(__name__)


@dataclass
class SpoofingReport:
    """Reference residuals of one epoch and the satellites to exclude.

    ``reference_residuals_m`` are taken against the last solved clock bias;
    ``common_mode_m`` is the part of them shared by every satellite.
    """
    reference_residuals_m: Dict[int, float] = field(default_factory=dict)
    excluded_prns: Tuple[int, ...] = ()
    active: bool = False
    common_mode_m: float = 0.0

    def residual_slots(self) -> np.ndarray:
        """32-slot array indexed by PRN - 1, NaN where no residual exists"""
        slots = np.full(MAX_PRN, np.nan)
        for prn, res in self.reference_residuals_m.items():
            slots[prn - 1] = res
        return slots

    def apply(self, epoch: PreprocessedEpoch) -> PreprocessedEpoch:
        """Epoch without the excluded satellites"""
        if not self.excluded_prns:
            return epoch
        return epoch.with_measurements(epoch.measurements.without(self.excluded_prns))


class SpoofingResidualFilter:
    """
    Compare each pseudorange with the one predicted at a reference position

    A genuine signal received at the reference position leaves a residual
    of a few meters (atmosphere model errors and noise). A spoofed signal
    carries the offset the spoofer introduced. The receiver clock bias of
    the last solved epoch is removed from every residual, and what the
    satellites still share (a clock jump, a change of the satellite the
    pseudoranges are referenced to) is estimated as the median residual.
    Once enough epochs have been solved, satellites deviating from it by
    more than the limit are excluded from the current epoch.

    Parameters
    ----------
    config : SpoofingConfig, optional
        Residual limit and warm-up length
    """

    def __init__(self, config: Optional[SpoofingConfig] = None):
        self.config = config or SpoofingConfig()

    def is_armed(self, anti_spoof_enabled: bool, completed_epochs: int) -> bool:
        return anti_spoof_enabled and completed_epochs >= self.config.warmup_epochs

    def evaluate(self, epoch: PreprocessedEpoch, provider: EphemerisProvider,
                 reference: Optional[ReferencePosition], receiver_state: ReceiverState,
                 anti_spoof_enabled: bool = False, completed_epochs: int = 0,
                 geoid_height_m: Optional[float] = None,
                 elevation_above_sea_level_m: float = 0.0,
                 atmospheric_corrections: bool = True,
                 min_satellites: int = MIN_SATELLITES) -> SpoofingReport:
        """
        Reference residuals and exclusions for one epoch

        Parameters
        ----------
        epoch : PreprocessedEpoch
            Preprocessed measurements
        provider : EphemerisProvider
            Satellite states
        reference : ReferencePosition or None
            Trusted position; without it nothing is computed
        receiver_state : ReceiverState
            Last committed solution, its clock bias is used for the prediction
        anti_spoof_enabled : bool
            Operator switch for exclusions
        completed_epochs : int
            Number of successfully solved epochs so far
        geoid_height_m : float, optional
            Geoid height for the tropospheric model
        elevation_above_sea_level_m : float
            Height used by the tropospheric model while the geoid is unknown
        atmospheric_corrections : bool
            Include iono and tropo delays in the prediction
        min_satellites : int
            Exclusions that would leave fewer satellites are not applied

        Returns
        -------
        SpoofingReport
        """
        if reference is None:
            return SpoofingReport()

        corrector = None
        if atmospheric_corrections:
            corrector = AtmosphericCorrector(epoch.day_of_year, epoch.receiver_tow_s,
                                             iono_parameters=provider.ionosphere_parameters(),
                                             geoid_height_m=geoid_height_m,
                                             elevation_above_sea_level_m=elevation_above_sea_level_m)

        clock_bias = receiver_state.clock_bias_m
        receiver_tow = epoch.receiver_tow_s - clock_bias / CLIGHT
        residuals = {}
        for prn, meas in epoch.measurements.items():
            try:
                sat = satellite_state_at_transmit(provider, prn, receiver_tow, epoch.week_number,
                                                  meas.pseudorange_m)
            except EphemerisNotFoundError:
                continue
            iono, tropo = (0.0, 0.0) if corrector is None else corrector(reference.ecef,
                                                                         sat.position_ecef)
            residuals[prn] = meas.pseudorange_m - predicted_pseudorange(
                sat, reference.ecef, clock_bias, iono, tropo)

        armed = self.is_armed(anti_spoof_enabled, completed_epochs)
        common_mode = 0.0
        if self.config.estimate_common_mode and residuals:
            common_mode = float(np.median(list(residuals.values())))

        excluded = ()
        if armed:
            excluded = tuple(prn for prn, res in sorted(residuals.items())
                             if abs(res - common_mode) > self.config.residual_limit_m)
            remaining = len(epoch.measurements) - len(excluded)
            if excluded and remaining < min_satellites:
                logger.warning("Reference residuals flag PRNs %s but only %d satellites would "
                               "remain, solving without exclusions", list(excluded), remaining)
                excluded = ()
            for prn in excluded:
                logger.info("PRN %d excluded as spoofed, reference residual %.1f m "
                            "(common mode %.1f m)", prn, residuals[prn], common_mode)

        return SpoofingReport(residuals, excluded, armed, common_mode)
