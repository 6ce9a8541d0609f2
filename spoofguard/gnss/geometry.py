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

"""Line-of-sight geometry for least squares positioning"""

import numpy as np
from numba import njit


@njit(cache=True)
def geometry_matrix(satellite_positions, receiver_position):
    """
    Least squares geometry matrix.

    Parameters
    ----------
    satellite_positions : ndarray, shape (n, 3)
        Satellite ECEF positions (m)
    receiver_position : ndarray, shape (3,)
        Receiver ECEF position (m)

    Returns
    -------
    G : ndarray, shape (n, 4)
        Rows [(rx - sat) / |rx - sat|, 1]
    """
    n = satellite_positions.shape[0]
    G = np.empty((n, 4))
    for i in range(n):
        dx = receiver_position[0] - satellite_positions[i, 0]
        dy = receiver_position[1] - satellite_positions[i, 1]
        dz = receiver_position[2] - satellite_positions[i, 2]
        r = np.sqrt(dx * dx + dy * dy + dz * dz)
        G[i, 0] = dx / r
        G[i, 1] = dy / r
        G[i, 2] = dz / r
        G[i, 3] = 1.0
    return G


def dilution_of_precision(G, rotation_enu=None):
    """
    GDOP/PDOP/HDOP/VDOP/TDOP from a geometry matrix

    Parameters:
    -----------
    G : np.ndarray
        Geometry matrix (n x 4)
    rotation_enu : np.ndarray, optional
        3x3 ECEF-to-ENU rotation; when given, horizontal and vertical DOP
        refer to the local frame

    Returns:
    --------
    tuple : (gdop, pdop, hdop, vdop, tdop), inf when the geometry is singular
    """
    try:
        Q = np.linalg.inv(G.T @ G)
    except np.linalg.LinAlgError:
        return (np.inf,) * 5

    if rotation_enu is not None:
        R = np.eye(4)
        R[:3, :3] = rotation_enu
        Q = R @ Q @ R.T

    gdop = np.sqrt(np.trace(Q))
    pdop = np.sqrt(Q[0, 0] + Q[1, 1] + Q[2, 2])
    hdop = np.sqrt(Q[0, 0] + Q[1, 1])
    vdop = np.sqrt(Q[2, 2])
    tdop = np.sqrt(Q[3, 3])
    return gdop, pdop, hdop, vdop, tdop
