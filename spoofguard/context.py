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

"""Mutable state shared across epochs of one positioning session"""

import logging
import threading
from typing import Callable, Optional

import numpy as np

from .config import PositioningConfig
from .coordinate.transforms import llh2ecef
from .core.data_structures import EpochSolution, ReceiverState, ReferencePosition
from .fusion.dead_reckoning import DeadReckoning
from .fusion.kalman import SensorFusionKalmanFilter

logger = logging.getLogger(__name__)

E7 = 1e-7


def reference_position_from_e7(lat_e7: int, lon_e7: int, alt_e7: int) -> ReferencePosition:
    """
    Reference position from fixed-point integers

    Parameters:
    -----------
    lat_e7, lon_e7 : int
        Latitude and longitude in units of 1e-7 degree
    alt_e7 : int
        Ellipsoidal height in units of 1e-7 m

    Returns:
    --------
    ReferencePosition
    """
    lat_deg = lat_e7 * E7
    lon_deg = lon_e7 * E7
    alt_m = alt_e7 * E7
    if not -90.0 <= lat_deg <= 90.0:
        raise ValueError(f"Latitude out of range: {lat_deg} deg")
    ecef = llh2ecef(np.array([np.radians(lat_deg), np.radians(lon_deg), alt_m]))
    return ReferencePosition(lat_deg, lon_deg, alt_m, ecef)


class PositioningContext:
    """
    State carried from one epoch to the next.

    Holds the warm-start receiver state, the count of solved epochs, the
    geoid height, the operator settings (reference position, anti-spoofing
    switch), the ENU anchor of the fusion frame, the Kalman filter and the
    dead-reckoning accumulator. Every access goes through ``lock``; the
    engine holds it for a whole epoch so that a concurrent IMU sample or
    operator command never sees a half-updated state.
    """

    def __init__(self, config: Optional[PositioningConfig] = None,
                 elevation_lookup: Optional[Callable[[float, float], float]] = None):
        self.config = config or PositioningConfig()
        self.elevation_lookup = elevation_lookup
        self.lock = threading.RLock()
        self.kalman = SensorFusionKalmanFilter(self.config.fusion)
        self.dead_reckoning = DeadReckoning(self.config.dead_reckoning)
        self.reference: Optional[ReferencePosition] = None
        self.anti_spoof_enabled = self.config.spoofing.enabled
        self.reset()

    def reset(self):
        """Forget every epoch; operator settings are kept"""
        with self.lock:
            self.receiver_state = ReceiverState()
            self.completed_epochs = 0
            self.geoid_height_m: Optional[float] = None
            self.enu_anchor_ecef: Optional[np.ndarray] = None
            self.enu_anchor_llh: Optional[np.ndarray] = None
            self.first_epoch_pending = self.config.discard_first_epoch
            self.last_solution = EpochSolution.nan()
            self.kalman.reset()
            self.dead_reckoning.reset()

    @property
    def geoid_computed(self) -> bool:
        return self.geoid_height_m is not None

    def set_reference_position(self, lat_e7: int, lon_e7: int, alt_e7: int) -> ReferencePosition:
        reference = reference_position_from_e7(lat_e7, lon_e7, alt_e7)
        with self.lock:
            self.reference = reference
        logger.info("Reference position set to %.7f, %.7f, %.2f m",
                    reference.latitude_deg, reference.longitude_deg, reference.altitude_m)
        return reference

    def clear_reference_position(self):
        with self.lock:
            self.reference = None
        logger.info("Reference position cleared")

    def set_anti_spoof_enabled(self, enabled: bool):
        with self.lock:
            self.anti_spoof_enabled = bool(enabled)
        logger.info("Anti-spoofing %s", "enabled" if enabled else "disabled")

    def commit(self, receiver_state: ReceiverState, geoid_height_m: Optional[float] = None):
        """Accept a solved epoch: warm start, warm-up count and geoid latch"""
        with self.lock:
            self.receiver_state = receiver_state.copy()
            self.completed_epochs += 1
            if self.geoid_height_m is None and geoid_height_m is not None:
                self.geoid_height_m = float(geoid_height_m)
                logger.info("Geoid height latched at %.2f m", self.geoid_height_m)

    def latch_anchor(self, position_ecef: np.ndarray, llh: np.ndarray):
        """Fix the origin of the fusion ENU frame"""
        with self.lock:
            self.enu_anchor_ecef = np.array(position_ecef, dtype=float)
            self.enu_anchor_llh = np.array(llh, dtype=float)
            self.dead_reckoning.reset()
            self.kalman.reset()
