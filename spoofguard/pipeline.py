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

"""Epoch-by-epoch positioning with spoofing exclusion and IMU fusion.

Processing of one raw batch:

1. Preprocessing into pseudoranges on a common reception time
2. Satellites without ephemeris are dropped
3. Spoofing pre-pass against the reference position, if one is set
4. Weighted least squares position and velocity
5. Commit to the context (warm start, warm-up count, geoid)
6. Kalman fusion with the dead-reckoned IMU state
"""

import logging
from typing import Callable, Optional

import numpy as np

from .config import PositioningConfig
from .context import PositioningContext
from .coordinate.transforms import ecef2enu
from .core.constants import CLIGHT
from .core.data_structures import (EpochSolution, FusedState, ImuSample, PreprocessedEpoch,
                                   RawMeasurementBatch, ReferencePosition)
from .core.errors import EphemerisNotFoundError, InsufficientSatellitesError, PositioningError
from .core.result import Result
from .gnss.ephemeris import EphemerisProvider, corrected_transmit_time
from .gnss.preprocessing import MeasurementPreprocessor
from .gnss.spoofing import SpoofingReport, SpoofingResidualFilter
from .gnss.wls import WeightedLeastSquaresSolver, WlsSolution
from .logger import setup_logger_from_config

logger = logging.getLogger(__name__)


class PositioningEngine:
    """
    GNSS positioning engine for one receiver

    Parameters:
    -----------
    provider : EphemerisProvider
        Satellite states
    config : PositioningConfig, optional
        Ignored when a context is given (the context carries its own)
    context : PositioningContext, optional
        Shared state; a fresh one is created by default
    elevation_lookup : callable, optional
        ``f(lat_deg, lon_deg) -> meters above sea level`` for the geoid,
        only used when no context is given
    """

    def __init__(self, provider: EphemerisProvider, config: Optional[PositioningConfig] = None,
                 context: Optional[PositioningContext] = None,
                 elevation_lookup: Optional[Callable[[float, float], float]] = None):
        self.provider = provider
        self.context = context or PositioningContext(config, elevation_lookup)
        self.config = self.context.config
        self.preprocessor = MeasurementPreprocessor(self.config.preprocessor)
        self.solver = WeightedLeastSquaresSolver(self.config.solver, self.context.elevation_lookup)
        self.spoofing_filter = SpoofingResidualFilter(self.config.spoofing)
        if self.config.logging:
            setup_logger_from_config(self.config.logging)

    def process_batch(self, batch: RawMeasurementBatch) -> Result[EpochSolution]:
        """
        Process one raw measurement batch

        On failure the context is left untouched and the published solution
        is ``EpochSolution.nan()``.
        """
        ctx = self.context
        with ctx.lock:
            try:
                solution = self._process(batch)
            except PositioningError as exc:
                level = logging.INFO if exc.kind.is_skippable else logging.WARNING
                logger.log(level, "Epoch %d ns not solved (%s): %s", batch.clock.time_nanos,
                           exc.kind.value, exc)
                ctx.last_solution = EpochSolution.nan()
                return Result.from_exception(exc)
            ctx.last_solution = solution
            return Result.ok(solution)

    def _process(self, batch: RawMeasurementBatch) -> EpochSolution:
        ctx = self.context
        epoch = self._with_ephemeris(self.preprocessor.preprocess(batch))

        if len(epoch.measurements) < self.config.solver.min_satellites:
            raise InsufficientSatellitesError(len(epoch.measurements),
                                              self.config.solver.min_satellites)

        if ctx.first_epoch_pending:
            ctx.first_epoch_pending = False
            logger.info("Discarding first usable epoch (%d satellites)", len(epoch.measurements))
            return EpochSolution.nan()

        solver_config = self.config.solver
        report = self.spoofing_filter.evaluate(
            epoch, self.provider, ctx.reference, ctx.receiver_state,
            anti_spoof_enabled=ctx.anti_spoof_enabled,
            completed_epochs=ctx.completed_epochs,
            geoid_height_m=ctx.geoid_height_m,
            elevation_above_sea_level_m=solver_config.default_elevation_above_sea_level_m,
            atmospheric_corrections=solver_config.atmospheric_corrections,
            min_satellites=solver_config.min_satellites)

        wls = self.solver.solve_or_raise(report.apply(epoch), self.provider,
                                         ctx.receiver_state, ctx.geoid_height_m)

        ctx.commit(wls.receiver_state, wls.geoid_height_m)
        self._fuse(wls)
        return self._epoch_solution(wls, report)

    def _with_ephemeris(self, epoch: PreprocessedEpoch) -> PreprocessedEpoch:
        """Epoch restricted to satellites the provider knows"""
        receiver_tow = epoch.receiver_tow_s - self.context.receiver_state.clock_bias_m / CLIGHT
        missing = []
        for prn, meas in epoch.measurements.items():
            try:
                corrected_transmit_time(self.provider, prn, receiver_tow, epoch.week_number,
                                        meas.pseudorange_m)
            except EphemerisNotFoundError:
                missing.append(prn)
        if missing:
            logger.debug("No ephemeris for PRNs %s", missing)
            epoch = epoch.with_measurements(epoch.measurements.without(missing))
        return epoch

    def _fuse(self, wls: WlsSolution):
        ctx = self.context
        state = wls.receiver_state
        if ctx.enu_anchor_ecef is None:
            reference = ctx.reference
            if self.config.fusion.anchor_at_reference and reference is not None:
                ctx.latch_anchor(reference.ecef, reference.llh)
            else:
                ctx.latch_anchor(state.position_ecef, wls.llh)
            logger.info("Fusion frame anchored at %s", np.round(ctx.enu_anchor_ecef, 3))
            return

        z = np.concatenate([ecef2enu(state.position_ecef, ctx.enu_anchor_llh),
                            wls.velocity_enu_mps])
        x = ctx.kalman.update(ctx.dead_reckoning.state_vector(), z)
        ctx.dead_reckoning.overwrite(x)

    @staticmethod
    def _epoch_solution(wls: WlsSolution, report: SpoofingReport) -> EpochSolution:
        return EpochSolution(
            receiver_state=wls.receiver_state.copy(),
            latitude_deg=float(np.degrees(wls.llh[0])),
            longitude_deg=float(np.degrees(wls.llh[1])),
            altitude_m=float(wls.llh[2]),
            velocity_enu_mps=np.array(wls.velocity_enu_mps),
            position_uncertainty_enu_m=np.array(wls.position_uncertainty_enu_m),
            velocity_uncertainty_enu_mps=np.array(wls.velocity_uncertainty_enu_mps),
            pseudorange_residuals_m=wls.residual_set.residual_slots(),
            reference_residuals_m=report.residual_slots(),
            used_prns=wls.residual_set.prns,
            outlier_prns=wls.outlier_prns,
            spoofed_prns=report.excluded_prns,
            dop=wls.dop,
            iterations=wls.iterations,
        )

    @property
    def last_solution(self) -> EpochSolution:
        with self.context.lock:
            return self.context.last_solution

    def on_imu_sample(self, sample: ImuSample) -> bool:
        """Feed one IMU sample to dead reckoning"""
        with self.context.lock:
            return self.context.dead_reckoning.propagate(sample)

    def fused_state(self) -> FusedState:
        """Current fused ENU state relative to the fusion anchor"""
        ctx = self.context
        with ctx.lock:
            dr = ctx.dead_reckoning
            return FusedState(dr.position_enu.copy(), dr.velocity_enu.copy(),
                              ctx.kalman.get_covariance())

    def set_reference_position(self, lat_e7: int, lon_e7: int, alt_e7: int) -> ReferencePosition:
        return self.context.set_reference_position(lat_e7, lon_e7, alt_e7)

    def clear_reference_position(self):
        self.context.clear_reference_position()

    def set_anti_spoof_enabled(self, enabled: bool):
        self.context.set_anti_spoof_enabled(enabled)
