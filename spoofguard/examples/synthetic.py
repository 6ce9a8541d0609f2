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

"""
Synthetic GPS scenario with exactly known truth

Satellites are placed at given azimuth/elevation around a static receiver,
at geometric ranges that are whole nanoseconds of light travel. The raw
measurements are then exact integers and the preprocessing reproduces the
geometry without rounding. Biases and spoofing offsets can be injected on
any satellite.

Run as a script for a short demonstration of the positioning engine.
"""

import logging
from typing import Dict, Optional, Sequence, Tuple

import numpy as np

from ..config import PositioningConfig
from ..coordinate.transforms import enu_rotation_matrix, llh2ecef
from ..core.constants import (AVERAGE_TRAVEL_TIME_S, CLIGHT, CONSTELLATION_GPS,
                              STATE_CODE_LOCK, STATE_TOW_DECODED, WEEK_NANOS)
from ..core.data_structures import (GnssClock, MeasurementSet, PreprocessedEpoch,
                                    PseudorangeMeasurement, RawMeasurement,
                                    RawMeasurementBatch)
from ..core.time import GpsTime
from ..gnss.ephemeris import InMemoryEphemerisProvider
from ..gnss.geometry import geometry_matrix
from ..gnss.preprocessing import dll_pseudorange_sigma
from ..logger import setup_logger

logger = logging.getLogger(__name__)

# PRN: (azimuth deg, elevation deg)
DEFAULT_CONSTELLATION = {
    2: (0.0, 75.0),
    5: (45.0, 30.0),
    9: (160.0, 20.0),
    13: (260.0, 15.0),
    17: (110.0, 50.0),
    21: (210.0, 40.0),
    26: (300.0, 55.0),
    30: (340.0, 25.0),
}

ORBIT_RADIUS_M = 26_560_000.0
EARTH_RADIUS_M = 6_371_000.0
SATELLITE_SPEED_MPS = 3_000.0
HARDWARE_CLOCK_START_NS = 1_000_000_000


def slant_range(elevation_rad: float) -> float:
    """Distance to a GPS orbit seen at the given elevation (spherical Earth)"""
    cos_el = np.cos(elevation_rad)
    return (np.sqrt(ORBIT_RADIUS_M ** 2 - (EARTH_RADIUS_M * cos_el) ** 2)
            - EARTH_RADIUS_M * np.sin(elevation_rad))


class SyntheticScenario:
    """
    Static receiver observing a fixed constellation

    Parameters
    ----------
    receiver_llh_deg : tuple
        Receiver latitude (deg), longitude (deg) and ellipsoidal height (m)
    constellation : dict
        PRN -> (azimuth deg, elevation deg)
    week, tow_s : int, float
        GPS time of the first epoch (tow in whole seconds)
    receiver_velocity_enu : sequence
        Receiver velocity used for the pseudorange rates (m/s)
    clock_bias_rate_mps : float
        Receiver clock drift seen in the pseudorange rates (m/s)
    cn0_dbhz : float
        Signal strength reported for every satellite
    """

    def __init__(self, receiver_llh_deg=(35.681, 139.767, 40.0),
                 constellation: Optional[Dict[int, Tuple[float, float]]] = None,
                 week: int = 2300, tow_s: float = 345600.0,
                 receiver_velocity_enu: Sequence[float] = (0.0, 0.0, 0.0),
                 clock_bias_rate_mps: float = 0.0, cn0_dbhz: float = 40.0):
        lat, lon, h = receiver_llh_deg
        self.receiver_llh = np.array([np.radians(lat), np.radians(lon), h])
        self.receiver_ecef = llh2ecef(self.receiver_llh)
        self.constellation = dict(constellation or DEFAULT_CONSTELLATION)
        self.week = int(week)
        self.tow_ns = int(round(tow_s * 1e9))
        self.cn0_dbhz = cn0_dbhz
        self.clock_bias_rate_mps = clock_bias_rate_mps

        rotation = enu_rotation_matrix(self.receiver_llh[0], self.receiver_llh[1])
        self.receiver_velocity_ecef = rotation.T @ np.asarray(receiver_velocity_enu, dtype=float)

        # Travel times in whole nanoseconds
        self.travel_ns: Dict[int, int] = {}
        self.satellite_positions: Dict[int, np.ndarray] = {}
        self.satellite_velocities: Dict[int, np.ndarray] = {}
        for prn, (az_deg, el_deg) in sorted(self.constellation.items()):
            az, el = np.radians(az_deg), np.radians(el_deg)
            los = rotation.T @ np.array([np.sin(az) * np.cos(el),
                                         np.cos(az) * np.cos(el),
                                         np.sin(el)])
            k = int(round(slant_range(el) / CLIGHT * 1e9))
            self.travel_ns[prn] = k
            self.satellite_positions[prn] = self.receiver_ecef + k * 1e-9 * CLIGHT * los

            along_track = np.cross(los, [0.0, 0.0, 1.0])
            norm = np.linalg.norm(along_track)
            along_track = np.array([1.0, 0.0, 0.0]) if norm < 1e-6 else along_track / norm
            self.satellite_velocities[prn] = SATELLITE_SPEED_MPS * along_track

    @property
    def prns(self):
        return sorted(self.constellation)

    @property
    def clock_bias_m(self) -> float:
        """Receiver clock bias implied by the common reception time"""
        return (AVERAGE_TRAVEL_TIME_S - min(self.travel_ns.values()) * 1e-9) * CLIGHT

    def provider(self) -> InMemoryEphemerisProvider:
        """Ephemeris provider holding the static satellites"""
        provider = InMemoryEphemerisProvider()
        for prn in self.prns:
            provider.add_satellite(prn, self.satellite_positions[prn],
                                   self.satellite_velocities[prn])
        return provider

    def pseudorange_rates(self) -> Dict[int, float]:
        prns = self.prns
        sat_positions = np.array([self.satellite_positions[prn] for prn in prns])
        G = geometry_matrix(sat_positions, self.receiver_ecef)
        rates = {}
        for i, prn in enumerate(prns):
            rates[prn] = float(G[i, :3] @ self.receiver_velocity_ecef
                               - G[i, :3] @ self.satellite_velocities[prn]
                               + self.clock_bias_rate_mps)
        return rates

    def raw_batch(self, epoch_index: int = 0,
                  pseudorange_offsets_m: Optional[Dict[int, float]] = None,
                  prns: Optional[Sequence[int]] = None,
                  overrides: Optional[Dict[int, dict]] = None) -> RawMeasurementBatch:
        """
        Raw measurement batch of one epoch, one second apart

        ``pseudorange_offsets_m`` lengthens the pseudorange of the given
        PRNs (rounded to whole nanoseconds); ``overrides`` replaces
        RawMeasurement fields per PRN.
        """
        offsets = pseudorange_offsets_m or {}
        overrides = overrides or {}
        tow_ns = self.tow_ns + epoch_index * 1_000_000_000
        arrival_ns = self.week * WEEK_NANOS + tow_ns
        time_nanos = HARDWARE_CLOCK_START_NS + epoch_index * 1_000_000_000
        clock = GnssClock(time_nanos=time_nanos, full_bias_nanos=time_nanos - arrival_ns)

        rates = self.pseudorange_rates()
        measurements = []
        for prn in (self.prns if prns is None else prns):
            shift_ns = int(round(offsets.get(prn, 0.0) / CLIGHT * 1e9))
            fields = dict(
                svid=prn,
                constellation_type=CONSTELLATION_GPS,
                state=STATE_CODE_LOCK | STATE_TOW_DECODED,
                received_sv_time_nanos=tow_ns - self.travel_ns[prn] - shift_ns,
                received_sv_time_uncertainty_nanos=10.0,
                cn0_dbhz=self.cn0_dbhz,
                pseudorange_rate_mps=rates[prn],
                pseudorange_rate_uncertainty_mps=0.1,
            )
            fields.update(overrides.get(prn, {}))
            measurements.append(RawMeasurement(**fields))
        return RawMeasurementBatch(clock, tuple(measurements))

    def preprocessed_epoch(self, epoch_index: int = 0,
                           pseudorange_offsets_m: Optional[Dict[int, float]] = None,
                           prns: Optional[Sequence[int]] = None,
                           uncertainty_m: Optional[float] = None) -> PreprocessedEpoch:
        """Pseudoranges as preprocessing would produce them, offsets applied exactly"""
        offsets = pseudorange_offsets_m or {}
        prns = self.prns if prns is None else list(prns)
        k_min = min(self.travel_ns[prn] for prn in prns)
        sigma = dll_pseudorange_sigma(self.cn0_dbhz) if uncertainty_m is None else uncertainty_m
        rates = self.pseudorange_rates()

        measurements = MeasurementSet(
            PseudorangeMeasurement(
                prn=prn,
                pseudorange_m=((AVERAGE_TRAVEL_TIME_S + (self.travel_ns[prn] - k_min) * 1e-9)
                               * CLIGHT + offsets.get(prn, 0.0)),
                pseudorange_uncertainty_m=sigma,
                pseudorange_rate_mps=rates[prn],
                pseudorange_rate_uncertainty_mps=0.1)
            for prn in prns)

        arrival_ns = self.week * WEEK_NANOS + self.tow_ns + epoch_index * 1_000_000_000
        gps_time = GpsTime.from_gps_nanos(arrival_ns)
        return PreprocessedEpoch(measurements, gps_time.tow, gps_time.week,
                                 gps_time.day_of_year, arrival_ns)


def main():
    from ..pipeline import PositioningEngine

    setup_logger(level="INFO")
    scenario = SyntheticScenario()
    config = PositioningConfig.from_dict({'solver': {'atmospheric_corrections': False}})
    engine = PositioningEngine(scenario.provider(), config)

    lat, lon, h = np.degrees(scenario.receiver_llh[0]), np.degrees(scenario.receiver_llh[1]), \
        scenario.receiver_llh[2]
    engine.set_reference_position(int(round(lat * 1e7)), int(round(lon * 1e7)),
                                  int(round(h * 1e7)))
    engine.set_anti_spoof_enabled(True)

    for i in range(15):
        offsets = {13: 500.0} if i >= 12 else None
        result = engine.process_batch(scenario.raw_batch(i, offsets))
        if not result.is_ok:
            print(f"epoch {i}: {result.error.value} {result.message}")
            continue
        sol = result.value
        error = np.linalg.norm(sol.receiver_state.position_ecef - scenario.receiver_ecef)
        print(f"epoch {i:2d}: lat {sol.latitude_deg:.7f} lon {sol.longitude_deg:.7f} "
              f"alt {sol.altitude_m:8.2f} m  error {error:.3f} m  "
              f"used {list(sol.used_prns)}  spoofed {list(sol.spoofed_prns)}")

    fused = engine.fused_state()
    print(f"fused ENU position {np.round(fused.position_enu_m, 3)} m")


if __name__ == '__main__':
    main()
