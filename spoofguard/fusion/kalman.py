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

"""Linear Kalman filter fusing dead-reckoned IMU state with GNSS fixes"""

import numpy as np
from typing import Optional

from ..config import FusionConfig

STATE_DIM = 6


class SensorFusionKalmanFilter:
    """Loosely-coupled GNSS/IMU filter on [E, N, U, vE, vN, vU]

    The prior comes from dead reckoning, the measurement is the GNSS
    position offset from the ENU anchor and the GNSS ENU velocity. Both
    transition and observation matrices are the identity.
    """

    def __init__(self, config: Optional[FusionConfig] = None):
        """
        Initialize filter

        Parameters:
        -----------
        config : FusionConfig, optional
            Process/measurement noise and initial covariance
        """
        self.config = config or FusionConfig()
        self.A = np.eye(STATE_DIM)
        self.C = np.eye(STATE_DIM)
        self.Q = np.diag(self.config.process_noise)
        self.R = self.config.measurement_noise * np.eye(STATE_DIM)
        self.reset()

    def reset(self):
        """Back to the initial covariance"""
        self.P = self.config.initial_covariance * np.eye(STATE_DIM)
        self.K = np.zeros((STATE_DIM, STATE_DIM))

    def update(self, x: np.ndarray, z: np.ndarray) -> np.ndarray:
        """
        One predict/update cycle

        Parameters:
        -----------
        x : np.ndarray
            Dead-reckoned state (6,)
        z : np.ndarray
            GNSS measurement (6,)

        Returns:
        --------
        np.ndarray
            Corrected state (6,)
        """
        x = np.asarray(x, dtype=float)
        z = np.asarray(z, dtype=float)
        if x.shape != (STATE_DIM,) or z.shape != (STATE_DIM,):
            raise ValueError(f"State and measurement must have shape ({STATE_DIM},), "
                             f"got {x.shape} and {z.shape}")

        # Prediction
        P_pred = self.A @ self.P.T @ self.A.T + self.Q

        # Kalman gain
        S = self.C @ P_pred @ self.C.T + self.R
        self.K = P_pred @ self.C.T @ np.linalg.inv(S)

        # Update
        x_new = x + self.K @ (z - self.C @ x)
        self.P = (np.eye(STATE_DIM) - self.K @ self.C) @ P_pred
        return x_new

    @property
    def gain(self) -> np.ndarray:
        """Kalman gain of the last update"""
        return self.K.copy()

    def get_covariance(self) -> np.ndarray:
        """Get state covariance matrix"""
        return self.P.copy()


def steady_state_gain(q: float, r: float) -> float:
    """Limit of the scalar gain for a random walk with noises q and r"""
    p_pred = (q + np.sqrt(q * q + 4.0 * q * r)) / 2.0
    return p_pred / (p_pred + r)
