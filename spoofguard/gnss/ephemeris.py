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

"""Satellite state lookup and transmit time correction.

Orbit propagation from broadcast ephemerides lives outside this package;
the pipeline only sees the ``EphemerisProvider`` interface.
"""

import logging
from abc import ABC, abstractmethod
from typing import Dict, Optional, Sequence, Tuple

import numpy as np

from ..core.constants import CLIGHT, SECONDS_IN_WEEK
from ..core.data_structures import SatelliteState
from ..core.errors import EphemerisNotFoundError
from ..core.time import adjust_week_rollover

logger = logging.getLogger(__name__)


class EphemerisProvider(ABC):
    """Source of satellite ECEF position, velocity and clock correction"""

    @abstractmethod
    def lookup(self, prn: int, tow: float, week: int) -> Optional[SatelliteState]:
        """
        Satellite state at a GPS transmit time

        Parameters:
        -----------
        prn : int
            GPS satellite number
        tow : float
            GPS time of week at transmission (s)
        week : int
            GPS week number

        Returns:
        --------
        SatelliteState or None when no ephemeris is loaded for the satellite
        """

    def ionosphere_parameters(self) -> Optional[Tuple[Sequence[float], Sequence[float]]]:
        """Broadcast Klobuchar (alpha, beta) coefficients, None if unavailable"""
        return None


class InMemoryEphemerisProvider(EphemerisProvider):
    """Provider backed by per-satellite states held in memory.

    Each satellite is stored with a state at a reference epoch and
    propagated linearly in time. A satellite added without a reference
    epoch is frozen at its stored state, which is convenient for replaying
    precomputed geometry.
    """

    def __init__(self):
        self._satellites: Dict[int, tuple] = {}
        self._iono = None

    def add_satellite(self, prn: int, position_ecef, velocity_ecef=None,
                      clock_correction_m: float = 0.0, clock_rate_mps: float = 0.0,
                      reference_tow: Optional[float] = None, reference_week: Optional[int] = None):
        position = np.asarray(position_ecef, dtype=float)
        velocity = np.zeros(3) if velocity_ecef is None else np.asarray(velocity_ecef, dtype=float)
        if position.shape != (3,) or velocity.shape != (3,):
            raise ValueError("Satellite position and velocity must be 3-vectors")
        if (reference_tow is None) != (reference_week is None):
            raise ValueError("reference_tow and reference_week must be given together")
        self._satellites[prn] = (position, velocity, float(clock_correction_m),
                                 float(clock_rate_mps), reference_tow, reference_week)

    def remove_satellite(self, prn: int):
        self._satellites.pop(prn, None)

    def set_ionosphere_parameters(self, alpha: Sequence[float], beta: Sequence[float]):
        if len(alpha) != 4 or len(beta) != 4:
            raise ValueError("Klobuchar alpha and beta need 4 coefficients each")
        self._iono = (tuple(alpha), tuple(beta))

    def ionosphere_parameters(self):
        return self._iono

    @property
    def prns(self):
        return sorted(self._satellites)

    def lookup(self, prn: int, tow: float, week: int) -> Optional[SatelliteState]:
        entry = self._satellites.get(prn)
        if entry is None:
            return None
        position, velocity, clock_m, clock_rate, ref_tow, ref_week = entry
        dt = 0.0
        if ref_tow is not None:
            dt = (week - ref_week) * SECONDS_IN_WEEK + (tow - ref_tow)
        return SatelliteState(position + velocity * dt, velocity.copy(),
                              clock_m + clock_rate * dt, clock_rate)


def corrected_transmit_time(provider: EphemerisProvider, prn: int, receiver_tow: float,
                            week: int, pseudorange_m: float) -> Tuple[float, int]:
    """
    GPS time of transmission corrected for travel time and satellite clock

    Parameters:
    -----------
    provider : EphemerisProvider
        Source of the satellite clock correction
    prn : int
        Satellite number
    receiver_tow : float
        Receiver time of week at reception, already corrected for the
        receiver clock bias (s)
    week : int
        Receiver GPS week
    pseudorange_m : float
        Measured pseudorange (m)

    Returns:
    --------
    tuple : (tow, week) of transmission

    Raises:
    -------
    EphemerisNotFoundError
        If the provider has no ephemeris for the satellite
    """
    tow_tx, week_tx = adjust_week_rollover(receiver_tow - pseudorange_m / CLIGHT, week)

    state = provider.lookup(prn, tow_tx, week_tx)
    if state is None:
        logger.debug("No ephemeris for PRN %d at week %d tow %.3f", prn, week_tx, tow_tx)
        raise EphemerisNotFoundError(prn)

    return adjust_week_rollover(tow_tx + state.clock_correction_m / CLIGHT, week_tx)


def satellite_state_at_transmit(provider: EphemerisProvider, prn: int, receiver_tow: float,
                                week: int, pseudorange_m: float) -> SatelliteState:
    """Satellite state evaluated at the corrected transmit time"""
    tow_tx, week_tx = corrected_transmit_time(provider, prn, receiver_tow, week, pseudorange_m)
    state = provider.lookup(prn, tow_tx, week_tx)
    if state is None:
        raise EphemerisNotFoundError(prn)
    return state
