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

"""Weighted least squares position and velocity from pseudoranges.

The position fit is a Gauss-Newton iteration on the receiver position and
clock bias. A converged fit is checked for residual outliers; the worst
satellite above the threshold is removed and the fit restarted until the
residuals are clean or only the minimum number of satellites is left.
Velocity and clock bias rate follow from the pseudorange rates with the
final geometry.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, List, Optional, Tuple

import numpy as np
from scipy import linalg

from ..config import SolverConfig
from ..coordinate.transforms import ecef2llh, enu_rotation_matrix
from ..core.constants import CLIGHT
from ..core.data_structures import (DilutionOfPrecision, MeasurementSet, PreprocessedEpoch,
                                    ReceiverState, SatelliteState, SolutionResidualSet)
from ..core.errors import (ConvergenceError, EphemerisNotFoundError,
                           InsufficientSatellitesError, PositioningError,
                           SingularCovarianceError)
from ..core.result import Result
from ..logger import trace
from .atmosphere import AtmosphericCorrector
from .ephemeris import EphemerisProvider, satellite_state_at_transmit
from .geometry import dilution_of_precision, geometry_matrix

logger = logging.getLogger(__name__)

ElevationLookup = Callable[[float, float], float]


def predicted_pseudorange(satellite: SatelliteState, evaluation_position, clock_bias_m: float,
                          iono_m: float = 0.0, tropo_m: float = 0.0) -> float:
    """
    Pseudorange expected at a receiver position

    Used both for the least squares residuals (evaluated at the current
    estimate) and for the spoofing residuals (evaluated at the trusted
    reference position).

    Parameters:
    -----------
    satellite : SatelliteState
        Satellite state at the corrected transmit time
    evaluation_position : np.ndarray
        Receiver ECEF position the prediction is made for (m)
    clock_bias_m : float
        Receiver clock bias (m)
    iono_m, tropo_m : float
        Atmospheric delays along the line of sight (m)

    Returns:
    --------
    float : predicted pseudorange (m)
    """
    geometric_range = np.linalg.norm(np.asarray(satellite.position_ecef, dtype=float) -
                                     np.asarray(evaluation_position, dtype=float))
    return float(geometric_range - satellite.clock_correction_m + iono_m + tropo_m + clock_bias_m)


class WlsPhase(Enum):
    """Stages of one position solve"""
    CONVERGING = "converging"
    CONVERGED = "converged"
    OUTLIER_CHECK = "outlier_check"
    RESTART_WITH_REDUCED_SET = "restart_with_reduced_set"
    DONE = "done"


@dataclass
class WlsSolution:
    """Outcome of a successful position/velocity solve"""
    receiver_state: ReceiverState
    residual_set: SolutionResidualSet
    llh: np.ndarray
    position_uncertainty_enu_m: np.ndarray
    velocity_uncertainty_enu_mps: np.ndarray
    dop: DilutionOfPrecision
    outlier_prns: Tuple[int, ...] = ()
    dropped_prns: Tuple[int, ...] = ()
    iterations: int = 0
    geoid_height_m: Optional[float] = None
    velocity_enu_mps: np.ndarray = field(default_factory=lambda: np.zeros(3))

    @property
    def uncertainty_enu(self) -> np.ndarray:
        """[σE, σN, σU, σvE, σvN, σvU]"""
        return np.concatenate([self.position_uncertainty_enu_m, self.velocity_uncertainty_enu_mps])


@dataclass
class _Fit:
    residual_set: SolutionResidualSet
    G: np.ndarray
    iterations: int


class _SolveScope:
    """Per-solve inputs shared by all restarts of the fit"""

    def __init__(self, epoch: PreprocessedEpoch, provider: EphemerisProvider,
                 geoid_height_m: Optional[float]):
        self.epoch = epoch
        self.provider = provider
        self.geoid_height_m = geoid_height_m
        self.corrector: Optional[AtmosphericCorrector] = None
        self.elevation_m: Optional[float] = None


class WeightedLeastSquaresSolver:
    """
    Iterative weighted least squares GNSS solver

    Parameters:
    -----------
    config : SolverConfig, optional
        Iteration, gating and outlier parameters
    elevation_lookup : callable, optional
        ``f(lat_deg, lon_deg) -> meters above sea level``, queried while the
        geoid height is still unknown. Falls back to
        ``config.default_elevation_above_sea_level_m``.
    """

    def __init__(self, config: Optional[SolverConfig] = None,
                 elevation_lookup: Optional[ElevationLookup] = None):
        self.config = config or SolverConfig()
        self.elevation_lookup = elevation_lookup

    def solve(self, epoch: PreprocessedEpoch, provider: EphemerisProvider,
              a_priori: ReceiverState, geoid_height_m: Optional[float] = None) -> Result[WlsSolution]:
        """
        Solve position, clock bias, velocity and clock bias rate

        The a priori state is never modified.

        Parameters:
        -----------
        epoch : PreprocessedEpoch
            Measurements and receiver time of the epoch
        provider : EphemerisProvider
            Satellite states and broadcast ionosphere
        a_priori : ReceiverState
            Starting point, usually the previous epoch's solution
        geoid_height_m : float, optional
            Geoid height once known; None on the first fix

        Returns:
        --------
        Result[WlsSolution]
        """
        try:
            return Result.ok(self.solve_or_raise(epoch, provider, a_priori, geoid_height_m))
        except PositioningError as exc:
            logger.debug("Solve failed: %s", exc)
            return Result.from_exception(exc)

    def solve_or_raise(self, epoch: PreprocessedEpoch, provider: EphemerisProvider,
                       a_priori: ReceiverState,
                       geoid_height_m: Optional[float] = None) -> WlsSolution:
        """Same as ``solve`` but raising PositioningError subclasses"""
        scope = _SolveScope(epoch, provider, geoid_height_m)
        state = a_priori.copy()
        active = epoch.measurements
        outliers: List[int] = []
        dropped: List[int] = []
        iterations = 0
        fit = None
        worst = None

        self._require_satellites(active)
        phase = WlsPhase.CONVERGING
        while phase is not WlsPhase.DONE:
            if phase is WlsPhase.CONVERGING:
                try:
                    fit = self._converge(scope, active, state)
                except EphemerisNotFoundError as exc:
                    logger.info("Dropping PRN %d: no ephemeris", exc.prn)
                    dropped.append(exc.prn)
                    active = active.without([exc.prn])
                    self._require_satellites(active)
                    state = a_priori.copy()
                    continue
                iterations += fit.iterations
                phase = WlsPhase.CONVERGED

            elif phase is WlsPhase.CONVERGED:
                logger.debug("Converged after %d iterations with %d satellites",
                             fit.iterations, len(active))
                phase = WlsPhase.OUTLIER_CHECK

            elif phase is WlsPhase.OUTLIER_CHECK:
                worst = self._worst_outlier(fit.residual_set, len(active))
                phase = WlsPhase.DONE if worst is None else WlsPhase.RESTART_WITH_REDUCED_SET

            elif phase is WlsPhase.RESTART_WITH_REDUCED_SET:
                logger.info("Rejecting PRN %d with residual %.1f m", worst,
                            fit.residual_set.residual_for(worst))
                outliers.append(worst)
                active = active.without([worst])
                phase = WlsPhase.CONVERGING

        llh = ecef2llh(state.position_ecef)
        rotation = np.eye(4)
        rotation[:3, :3] = enu_rotation_matrix(llh[0], llh[1])

        self._solve_velocity(scope, active, state, fit.G)

        geoid = geoid_height_m
        if geoid is None:
            geoid = float(llh[2] - self._elevation_above_sea_level(scope, llh))

        return WlsSolution(
            receiver_state=state,
            residual_set=fit.residual_set,
            llh=llh,
            position_uncertainty_enu_m=self._enu_sigma(fit.G, fit.residual_set.covariance_m2,
                                                       rotation),
            velocity_uncertainty_enu_mps=self._enu_sigma(fit.G, self._rate_covariance(active),
                                                         rotation),
            dop=DilutionOfPrecision(*dilution_of_precision(fit.G, rotation[:3, :3])),
            outlier_prns=tuple(outliers),
            dropped_prns=tuple(dropped),
            iterations=iterations,
            geoid_height_m=geoid,
            velocity_enu_mps=rotation[:3, :3] @ state.velocity_ecef,
        )

    def _require_satellites(self, measurements: MeasurementSet):
        if len(measurements) < self.config.min_satellites:
            raise InsufficientSatellitesError(len(measurements), self.config.min_satellites)

    def _worst_outlier(self, residual_set: SolutionResidualSet, n_active: int) -> Optional[int]:
        """PRN with the largest residual above threshold, if the set can shrink"""
        if n_active <= self.config.min_satellites:
            return None
        abs_res = np.abs(residual_set.residuals_m)
        idx = int(np.argmax(abs_res))
        if abs_res[idx] <= self.config.outlier_threshold_m:
            return None
        return residual_set.prns[idx]

    def _weight_matrix(self, covariance: np.ndarray) -> Optional[np.ndarray]:
        """Inverse covariance, or None when the covariance is near singular"""
        try:
            return self._inverse_covariance(covariance)
        except SingularCovarianceError as exc:
            logger.debug("Unweighted solution: %s", exc)
            return None

    def _inverse_covariance(self, covariance: np.ndarray) -> np.ndarray:
        det = linalg.det(covariance)
        if det <= self.config.determinant_tolerance:
            raise SingularCovarianceError(f"covariance determinant {det:.3e}")
        return linalg.inv(covariance)

    def _converge(self, scope: _SolveScope, active: MeasurementSet, state: ReceiverState) -> _Fit:
        """Gauss-Newton iterations until the position update is negligible"""
        covariance = np.diag([active[prn].pseudorange_uncertainty_m ** 2 for prn in active])
        weight = self._weight_matrix(covariance)

        corrector = None
        iterations = 0
        while True:
            residual_set, G = self._linearize(scope, active, state, corrector, covariance)
            dx = self._normal_equations(G, residual_set.residuals_m, weight)
            state.position_ecef = state.position_ecef + dx[:3]
            state.clock_bias_m = float(state.clock_bias_m + dx[3])
            iterations += 1

            step = float(np.sum(np.abs(dx[:3])))
            trace(logger, "iteration %d: step %.3e m, clock bias %.3f m",
                  iterations, step, state.clock_bias_m)
            if step < self.config.convergence_tolerance_m:
                return _Fit(residual_set, G, iterations)
            if iterations >= self.config.max_iterations:
                raise ConvergenceError(f"No convergence after {iterations} iterations "
                                       f"(last step {step:.3e} m)")
            if (corrector is None and self.config.atmospheric_corrections
                    and step < self.config.atmospheric_threshold_m):
                corrector = self._corrector(scope, state)

    def _linearize(self, scope: _SolveScope, active: MeasurementSet, state: ReceiverState,
                   corrector: Optional[AtmosphericCorrector], covariance: np.ndarray):
        epoch = scope.epoch
        receiver_tow = epoch.receiver_tow_s - state.clock_bias_m / CLIGHT

        prns = active.prns
        sat_positions = np.empty((len(prns), 3))
        residuals = np.empty(len(prns))
        for i, prn in enumerate(prns):
            meas = active[prn]
            sat = satellite_state_at_transmit(scope.provider, prn, receiver_tow,
                                              epoch.week_number, meas.pseudorange_m)
            iono, tropo = (0.0, 0.0) if corrector is None else corrector(state.position_ecef,
                                                                         sat.position_ecef)
            sat_positions[i] = sat.position_ecef
            residuals[i] = meas.pseudorange_m - predicted_pseudorange(
                sat, state.position_ecef, state.clock_bias_m, iono, tropo)

        G = geometry_matrix(sat_positions, np.asarray(state.position_ecef, dtype=float))
        return SolutionResidualSet(prns, sat_positions, residuals, covariance), G

    @staticmethod
    def _normal_equations(G: np.ndarray, residuals: np.ndarray,
                          weight: Optional[np.ndarray]) -> np.ndarray:
        try:
            if weight is None:
                return linalg.solve(G.T @ G, G.T @ residuals, assume_a='sym')
            H = linalg.inv(G.T @ weight @ G)
        except linalg.LinAlgError as exc:
            raise ConvergenceError(f"Singular normal equations: {exc}") from exc
        return H @ G.T @ weight @ residuals

    def _corrector(self, scope: _SolveScope, state: ReceiverState) -> AtmosphericCorrector:
        if scope.corrector is None:
            epoch = scope.epoch
            elevation = 0.0
            if scope.geoid_height_m is None:
                elevation = self._elevation_above_sea_level(scope, ecef2llh(state.position_ecef))
            scope.corrector = AtmosphericCorrector(
                epoch.day_of_year, epoch.receiver_tow_s,
                iono_parameters=scope.provider.ionosphere_parameters(),
                geoid_height_m=scope.geoid_height_m,
                elevation_above_sea_level_m=elevation)
        return scope.corrector

    def _elevation_above_sea_level(self, scope: _SolveScope, llh: np.ndarray) -> float:
        if scope.elevation_m is not None:
            return scope.elevation_m

        elevation = self.config.default_elevation_above_sea_level_m
        if self.elevation_lookup is not None:
            lat_deg, lon_deg = np.degrees(llh[0]), np.degrees(llh[1])
            try:
                elevation = float(self.elevation_lookup(lat_deg, lon_deg))
            except (OSError, ValueError, RuntimeError) as exc:
                logger.warning("Elevation lookup failed at (%.5f, %.5f), using %.1f m: %s",
                               lat_deg, lon_deg, elevation, exc)
        scope.elevation_m = elevation
        return elevation

    def _solve_velocity(self, scope: _SolveScope, active: MeasurementSet,
                        state: ReceiverState, G: np.ndarray):
        """Velocity and clock bias rate from pseudorange rates, in place"""
        epoch = scope.epoch
        receiver_tow = epoch.receiver_tow_s - state.clock_bias_m / CLIGHT

        prns = active.prns
        delta = np.empty(len(prns))
        inv_sigma = np.empty(len(prns))
        for i, prn in enumerate(prns):
            meas = active[prn]
            sat = satellite_state_at_transmit(scope.provider, prn, receiver_tow,
                                              epoch.week_number, meas.pseudorange_m)
            range_rate = -float(np.dot(sat.velocity_ecef, G[i, :3]))
            delta[i] = (meas.pseudorange_rate_mps - range_rate + sat.clock_rate_mps
                        - state.clock_bias_rate_mps)
            inv_sigma[i] = 1.0 / meas.pseudorange_rate_uncertainty_mps

        A = G * inv_sigma[:, None]
        b = delta * inv_sigma
        Q, R = linalg.qr(A, mode='economic')
        try:
            x = linalg.solve_triangular(R, Q.T @ b)
        except linalg.LinAlgError as exc:
            raise ConvergenceError(f"Singular velocity geometry: {exc}") from exc

        state.velocity_ecef = x[:3]
        state.clock_bias_rate_mps = float(state.clock_bias_rate_mps + x[3])

    @staticmethod
    def _rate_covariance(active: MeasurementSet) -> np.ndarray:
        return np.diag([active[prn].pseudorange_rate_uncertainty_mps ** 2 for prn in active])

    @staticmethod
    def _enu_sigma(G: np.ndarray, covariance: np.ndarray, rotation: np.ndarray) -> np.ndarray:
        """1-sigma ENU uncertainty from the weighted cofactor matrix"""
        H = linalg.inv(G.T @ linalg.inv(covariance) @ G)
        H_enu = rotation @ H @ rotation.T
        return np.sqrt(np.diag(H_enu)[:3])

