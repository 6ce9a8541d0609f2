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

"""Atmospheric corrections for GNSS pseudoranges.

Ionospheric Models:
- Klobuchar model: broadcast model using 8 coefficients (α0-α3, β0-β3)

Tropospheric Models:
- EGNOS model (RTCA MOPS DO-229): seasonal meteorological tables
  interpolated by latitude, with the UNB abc mapping function

Notes:
    All delay outputs are in meters.
    Angles are in radians unless otherwise specified.
"""

import numpy as np

from ..coordinate.transforms import ecef2llh, satazel
from ..core.constants import CLIGHT, FREQ_L1


def ionosphere_klobuchar(lat, lon, azimuth, elevation, tow, alpha, beta):
    """Calculate ionospheric delay using the Klobuchar broadcast model.

    Parameters
    ----------
    lat : float
        Receiver geodetic latitude in radians.
    lon : float
        Receiver geodetic longitude in radians.
    azimuth : float
        Satellite azimuth angle in radians, clockwise from North.
    elevation : float
        Satellite elevation angle in radians.
    tow : float
        GPS Time of Week in seconds.
    alpha : array_like of shape (4,)
        Alpha coefficients [α0, α1, α2, α3] from the navigation message.
    beta : array_like of shape (4,)
        Beta coefficients [β0, β1, β2, β3] from the navigation message.

    Returns
    -------
    float
        Ionospheric delay on L1 in meters. 0.0 if elevation <= 0.

    Notes
    -----
    Single-layer model with the pierce point at 350 km, following
    ICD-GPS-200. Intermediate angles are in semi-circles.
    """
    if elevation <= 0:
        return 0.0

    # Earth centered angle (semi-circles)
    psi = 0.0137 / (elevation / np.pi + 0.11) - 0.022

    # Subionospheric latitude and longitude
    phi_i = np.clip(lat / np.pi + psi * np.cos(azimuth), -0.416, 0.416)
    lambda_i = lon / np.pi + psi * np.sin(azimuth) / np.cos(phi_i * np.pi)

    # Geomagnetic latitude
    phi_m = phi_i + 0.064 * np.cos((lambda_i - 1.617) * np.pi)

    # Local time
    t = (43200.0 * lambda_i + tow) % 86400.0

    amp = max(0.0, alpha[0] + alpha[1] * phi_m + alpha[2] * phi_m**2 + alpha[3] * phi_m**3)
    per = max(72000.0, beta[0] + beta[1] * phi_m + beta[2] * phi_m**2 + beta[3] * phi_m**3)

    x = 2.0 * np.pi * (t - 50400.0) / per
    slant = 1.0 + 16.0 * (0.53 - elevation / np.pi)**3

    if abs(x) < 1.57:
        return CLIGHT * slant * (5e-9 + amp * (1.0 - x**2 / 2.0 + x**4 / 24.0))
    return CLIGHT * slant * 5e-9


def ionosphere_delay_ecef(receiver_ecef, satellite_ecef, tow, alpha, beta, frequency_hz=FREQ_L1):
    """Klobuchar delay for a receiver/satellite pair given in ECEF.

    The L1 delay is scaled by (f_L1 / f)^2 for other carrier frequencies.
    """
    los = np.asarray(satellite_ecef, dtype=float) - np.asarray(receiver_ecef, dtype=float)
    los /= np.linalg.norm(los)
    llh = ecef2llh(receiver_ecef)
    az, el = satazel(llh, los)
    delay = ionosphere_klobuchar(llh[0], llh[1], az, el, tow, alpha, beta)
    return delay * (FREQ_L1 / frequency_hz) ** 2


# EGNOS meteorological tables at |latitude| = 15, 30, 45, 60, 75 degrees
_EGNOS_LATITUDES_DEG = np.array([15.0, 30.0, 45.0, 60.0, 75.0])
_EGNOS_AVERAGE = {
    'pressure_mbar': np.array([1013.25, 1017.25, 1015.75, 1011.75, 1013.00]),
    'temperature_k': np.array([299.65, 294.15, 283.15, 272.15, 263.65]),
    'water_vapor_mbar': np.array([26.31, 21.79, 11.66, 6.78, 4.11]),
    'beta_k_per_m': np.array([6.30e-3, 6.05e-3, 5.58e-3, 5.39e-3, 4.53e-3]),
    'lambda': np.array([2.77, 3.15, 2.57, 1.81, 1.55]),
}
_EGNOS_SEASONAL = {
    'pressure_mbar': np.array([0.0, -3.75, -2.25, -1.75, -0.50]),
    'temperature_k': np.array([0.0, 7.00, 11.00, 15.00, 14.50]),
    'water_vapor_mbar': np.array([0.0, 8.85, 7.24, 5.36, 3.39]),
    'beta_k_per_m': np.array([0.0, 0.25e-3, 0.32e-3, 0.81e-3, 0.62e-3]),
    'lambda': np.array([0.0, 0.33, 0.46, 0.74, 0.30]),
}

K1 = 77.604            # K/mbar
K2 = 382000.0          # K^2/mbar
RD = 287.054           # J/kg/K
GM = 9.784             # m/s^2 at the atmospheric column centroid
G_SURFACE = 9.80665    # m/s^2
DMIN_NORTH = 28.0
DMIN_SOUTH = 211.0
DAYS_PER_YEAR = 365.25

_B_HYDRO, _C_HYDRO = 0.0035716, 0.082456
_B_WET, _C_WET = 0.0018576, 0.062741


def _egnos_meteo(lat, doy):
    abs_lat_deg = np.degrees(abs(lat))
    dmin = DMIN_SOUTH if lat < 0 else DMIN_NORTH
    season = np.cos(2.0 * np.pi * (doy - dmin) / DAYS_PER_YEAR)

    # np.interp clamps below 15 and above 75 degrees
    return {
        name: np.interp(abs_lat_deg, _EGNOS_LATITUDES_DEG, _EGNOS_AVERAGE[name])
        - np.interp(abs_lat_deg, _EGNOS_LATITUDES_DEG, _EGNOS_SEASONAL[name]) * season
        for name in _EGNOS_AVERAGE
    }


def egnos_zenith_delays(lat, height, doy):
    """
    Zenith hydrostatic and wet delays of the EGNOS model

    Parameters:
    -----------
    lat : float
        Receiver latitude (rad)
    height : float
        Receiver height above mean sea level (m)
    doy : int
        Day of year (1..366)

    Returns:
    --------
    zhd, zwd : float
        Zenith hydrostatic and wet delays (m)
    """
    meteo = _egnos_meteo(lat, doy)
    pressure = meteo['pressure_mbar']
    temperature = meteo['temperature_k']
    water_vapor = meteo['water_vapor_mbar']
    beta = meteo['beta_k_per_m']
    lam = meteo['lambda']

    zhd0 = 1.0e-6 * K1 * RD * pressure / GM
    zwd0 = (1.0e-6 * K2 * RD / (GM * (lam + 1.0) - beta * RD)) * water_vapor / temperature

    base = 1.0 - beta * height / temperature
    zhd = zhd0 * base ** (G_SURFACE / (RD * beta))
    zwd = zwd0 * base ** ((lam + 1.0) * G_SURFACE / (RD * beta) - 1.0)
    return zhd, zwd


def unb_abc_mapping(elevation, lat, height):
    """Dry and wet UNB abc mapping values, elevation clamped to [2°, 90°]"""
    elevation = np.clip(elevation, np.radians(2.0), np.pi / 2.0)
    sin_el = np.sin(elevation)

    a_hydro = (1.18972 - 0.026855 * height / 1000.0 + 0.10664 * np.cos(lat)) / 1000.0
    dry = ((1.0 + a_hydro / (1.0 + _B_HYDRO / (1.0 + _C_HYDRO)))
           / (sin_el + a_hydro / (sin_el + _B_HYDRO / (sin_el + _C_HYDRO))))

    a_wet = (0.61120 - 0.035348 * height / 1000.0 - 0.01526 * np.cos(lat)) / 1000.0
    wet = ((1.0 + a_wet / (1.0 + _B_WET / (1.0 + _C_WET)))
           / (sin_el + a_wet / (sin_el + _B_WET / (sin_el + _C_WET))))

    return dry, wet


def troposphere_egnos(elevation, lat, height, doy):
    """Slant tropospheric delay (m) of the EGNOS model"""
    zhd, zwd = egnos_zenith_delays(lat, height, doy)
    dry_map, wet_map = unb_abc_mapping(elevation, lat, height)
    return float(zhd * dry_map + zwd * wet_map)


class AtmosphericCorrector:
    """Iono and tropo corrections for one epoch.

    The tropospheric model needs the height above mean sea level. Once the
    geoid height is known it is derived from the ellipsoidal height;
    before that the supplied elevation above sea level is used as is.

    Parameters
    ----------
    day_of_year : int
        Day of year of the epoch (1..366)
    tow : float
        GPS time of week used by the Klobuchar model (s)
    iono_parameters : tuple, optional
        Klobuchar (alpha, beta); no ionospheric correction when None
    geoid_height_m : float, optional
        Geoid height above the ellipsoid (m)
    elevation_above_sea_level_m : float
        Receiver height above sea level used while the geoid is unknown
    """

    def __init__(self, day_of_year, tow, iono_parameters=None, geoid_height_m=None,
                 elevation_above_sea_level_m=0.0):
        self.day_of_year = day_of_year
        self.tow = tow
        self.iono_parameters = iono_parameters
        self.geoid_height_m = geoid_height_m
        self.elevation_above_sea_level_m = elevation_above_sea_level_m

    def height_above_sea_level(self, llh):
        if self.geoid_height_m is None:
            return self.elevation_above_sea_level_m
        return llh[2] - self.geoid_height_m

    def __call__(self, receiver_ecef, satellite_ecef):
        """Return (iono_m, tropo_m) for the receiver/satellite pair"""
        los = np.asarray(satellite_ecef, dtype=float) - np.asarray(receiver_ecef, dtype=float)
        los /= np.linalg.norm(los)
        llh = ecef2llh(receiver_ecef)
        az, el = satazel(llh, los)

        iono = 0.0
        if self.iono_parameters is not None:
            alpha, beta = self.iono_parameters
            iono = ionosphere_klobuchar(llh[0], llh[1], az, el, self.tow, alpha, beta)

        tropo = troposphere_egnos(el, llh[0], self.height_above_sea_level(llh), self.day_of_year)
        return iono, tropo
