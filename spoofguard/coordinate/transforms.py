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

"""Coordinate transformation utilities"""

from typing import Tuple

import numpy as np

from ..core.constants import FE_WGS84, RE_WGS84

_E2 = FE_WGS84 * (2.0 - FE_WGS84)


def ecef2llh(xyz: np.ndarray) -> np.ndarray:
    """Convert ECEF coordinates to geodetic coordinates

    Parameters
    ----------
    xyz : np.ndarray
        ECEF coordinates [x, y, z] in meters

    Returns
    -------
    np.ndarray
        Geodetic coordinates [lat, lon, height]: latitude and longitude in
        radians, height above the WGS84 ellipsoid in meters

    Notes
    -----
    Fixed-point iteration on latitude; five passes reach sub-millimeter
    height accuracy for terrestrial receivers.
    """
    x, y, z = xyz[0], xyz[1], xyz[2]

    lon = np.arctan2(y, x)

    p = np.sqrt(x**2 + y**2)
    lat = np.arctan2(z, p * (1.0 - FE_WGS84))

    for _ in range(5):
        N = RE_WGS84 / np.sqrt(1.0 - _E2 * np.sin(lat)**2)
        h = p / np.cos(lat) - N
        lat = np.arctan2(z, p * (1.0 - _E2 * N / (N + h)))

    return np.array([lat, lon, h])


def llh2ecef(llh: np.ndarray) -> np.ndarray:
    """Convert geodetic coordinates [lat (rad), lon (rad), height (m)] to ECEF meters"""
    lat, lon, h = llh[0], llh[1], llh[2]

    sin_lat = np.sin(lat)
    cos_lat = np.cos(lat)

    N = RE_WGS84 / np.sqrt(1.0 - _E2 * sin_lat**2)

    x = (N + h) * cos_lat * np.cos(lon)
    y = (N + h) * cos_lat * np.sin(lon)
    z = (N * (1.0 - _E2) + h) * sin_lat

    return np.array([x, y, z])


def enu_rotation_matrix(lat: float, lon: float) -> np.ndarray:
    """
    Rotation from ECEF vectors to local ENU vectors

    Parameters:
    -----------
    lat, lon : float
        Geodetic latitude and longitude of the local frame origin (rad)

    Returns:
    --------
    R : np.ndarray
        3x3 matrix such that enu = R @ d_ecef
    """
    sin_lat = np.sin(lat)
    cos_lat = np.cos(lat)
    sin_lon = np.sin(lon)
    cos_lon = np.cos(lon)

    return np.array([
        [-sin_lon, cos_lon, 0.0],
        [-sin_lat * cos_lon, -sin_lat * sin_lon, cos_lat],
        [cos_lat * cos_lon, cos_lat * sin_lon, sin_lat]
    ])


def ecef2enu(xyz: np.ndarray, org_llh: np.ndarray) -> np.ndarray:
    """Convert ECEF to local ENU coordinates

    Parameters
    ----------
    xyz : np.ndarray
        ECEF coordinates [x, y, z] in meters
    org_llh : np.ndarray
        Origin geodetic coordinates [lat (rad), lon (rad), height (m)]

    Returns
    -------
    np.ndarray
        East, north and up displacement from the origin in meters
    """
    dx = np.asarray(xyz, dtype=float) - llh2ecef(org_llh)
    return enu_rotation_matrix(org_llh[0], org_llh[1]) @ dx


def enu2ecef(enu: np.ndarray, org_llh: np.ndarray) -> np.ndarray:
    """Inverse of ecef2enu"""
    R = enu_rotation_matrix(org_llh[0], org_llh[1])
    return llh2ecef(org_llh) + R.T @ np.asarray(enu, dtype=float)


def satazel(llh: np.ndarray, los: np.ndarray) -> Tuple[float, float]:
    """Satellite azimuth/elevation from receiver position and line-of-sight vector

    ``los`` is the receiver-to-satellite unit vector in ECEF. Azimuth is
    returned in [0, 2π), elevation in [-π/2, π/2].
    """
    enu = enu_rotation_matrix(llh[0], llh[1]) @ los

    az = np.arctan2(enu[0], enu[1])
    if az < 0:
        az += 2 * np.pi
    el = np.arcsin(np.clip(enu[2], -1.0, 1.0))

    return az, el
