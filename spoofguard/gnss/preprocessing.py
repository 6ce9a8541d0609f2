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

"""Raw measurement validation and pseudorange generation"""

import logging
from typing import Dict, Iterable, Optional

import numpy as np

from ..config import PreprocessorConfig
from ..core.constants import (
    CLIGHT,
    GPS_CHIP_WIDTH_S,
    GPS_CORRELATOR_SPACING_CHIPS,
    GPS_DLL_AVERAGING_TIME_S,
    HALF_WEEK_SECONDS,
    MAX_PRN,
    SECONDS_IN_WEEK,
    WEEK_NANOS,
)
from ..core.data_structures import (
    GnssClock,
    MeasurementSet,
    PreprocessedEpoch,
    PseudorangeMeasurement,
    RawMeasurement,
    RawMeasurementBatch,
)
from ..core.errors import TimeBaseError
from ..core.time import GpsTime

logger = logging.getLogger(__name__)


def dll_pseudorange_sigma(cn0_dbhz: float) -> float:
    """
    Code tracking noise of a narrow-correlator DLL

    Misra and Enge, Global Positioning System, p. 416, with a 1 us chip,
    0.1 chip correlator spacing and 20 ms averaging time.

    Parameters:
    -----------
    cn0_dbhz : float
        Carrier to noise density (dB-Hz)

    Returns:
    --------
    sigma : float
        Pseudorange standard deviation (m)
    """
    snr = 10.0 ** (cn0_dbhz / 10.0)
    return CLIGHT * GPS_CHIP_WIDTH_S * np.sqrt(
        GPS_CORRELATOR_SPACING_CHIPS / (4.0 * GPS_DLL_AVERAGING_TIME_S * snr))


def is_clock_valid(clock: GnssClock) -> bool:
    """Full bias must be known (non-zero) and negative"""
    return clock.full_bias_nanos < 0


def correct_week_rollover(travel_time_s: float, max_residual_s: float):
    """
    Remove whole weeks from a reception minus transmission time

    Parameters:
    -----------
    travel_time_s : float
        Receiver time of week minus satellite transmit time of week (s)
    max_residual_s : float
        Largest plausible travel time after correction (s)

    Returns:
    --------
    tuple : (corrected travel time, whole weeks removed)

    Raises:
    -------
    TimeBaseError
        If the corrected travel time still exceeds max_residual_s
    """
    weeks = 0
    if abs(travel_time_s) > HALF_WEEK_SECONDS:
        weeks = int(round(travel_time_s / SECONDS_IN_WEEK))
        travel_time_s -= weeks * SECONDS_IN_WEEK
        if abs(travel_time_s) > max_residual_s:
            raise TimeBaseError(
                f"Travel time {travel_time_s:.3f} s after week rollover correction "
                f"exceeds {max_residual_s} s")
    return travel_time_s, weeks


class MeasurementPreprocessor:
    """Turns a raw measurement batch into per-satellite pseudoranges.

    The pseudoranges are referenced to a common reception time: the
    satellite with the latest transmit time of week gets the average travel
    time and every other satellite is offset by its transmit time
    difference. The common offset ends up in the receiver clock bias.
    """

    def __init__(self, config: Optional[PreprocessorConfig] = None):
        self.config = config or PreprocessorConfig()

    def is_valid(self, meas: RawMeasurement) -> bool:
        cfg = self.config
        # Uncertainties must be finite, positive where they become weights
        if not 0 <= meas.received_sv_time_uncertainty_nanos <= cfg.max_tow_uncertainty_ns:
            return False
        if cfg.uncertainty_model == 'time' and meas.received_sv_time_uncertainty_nanos == 0:
            return False
        if not 0 < meas.pseudorange_rate_uncertainty_mps <= cfg.max_prr_uncertainty_mps:
            return False
        if not np.isfinite(meas.cn0_dbhz):
            return False
        if meas.constellation_type != cfg.constellation_type:
            return False
        if meas.state & cfg.required_state_bits != cfg.required_state_bits:
            return False
        if meas.cn0_dbhz < cfg.min_cn0_dbhz:
            return False
        return 1 <= meas.svid <= MAX_PRN

    def valid_measurements(self, measurements: Iterable[RawMeasurement]) -> Dict[int, RawMeasurement]:
        """Valid measurements keyed by PRN, first one wins on duplicates"""
        valid = {}
        for meas in measurements:
            if not self.is_valid(meas):
                logger.debug("Discarding PRN %d measurement (state=%d, cn0=%.1f)",
                             meas.svid, meas.state, meas.cn0_dbhz)
                continue
            if meas.svid in valid:
                logger.warning("Duplicate measurement for PRN %d ignored", meas.svid)
                continue
            valid[meas.svid] = meas
        return valid

    def _uncertainty(self, meas: RawMeasurement) -> float:
        if self.config.uncertainty_model == 'time':
            return meas.received_sv_time_uncertainty_nanos * 1e-9 * CLIGHT
        return dll_pseudorange_sigma(meas.cn0_dbhz)

    def _process(self, measurements: Iterable[RawMeasurement], clock: GnssClock):
        if not is_clock_valid(clock):
            logger.warning("Invalid receiver clock (full bias %d ns), epoch has no usable time base",
                           clock.full_bias_nanos)
            return MeasurementSet(), False

        valid = self.valid_measurements(measurements)
        if not valid:
            return MeasurementSet(), False

        arrival_ns = clock.time_nanos - clock.full_bias_nanos
        rx_tow_ns = arrival_ns % WEEK_NANOS

        # Transmit times unwrapped onto the receiver's week
        tx_ns = {}
        rollover = False
        for prn, meas in valid.items():
            rx_ns = rx_tow_ns - meas.time_offset_nanos - clock.bias_nanos
            travel_s = (rx_ns - meas.received_sv_time_nanos) * 1e-9
            _, weeks = correct_week_rollover(travel_s, self.config.max_rollover_residual_s)
            if weeks:
                logger.info("PRN %d: corrected week rollover (%+d week)", prn, weeks)
                rollover = True
            tx_ns[prn] = meas.received_sv_time_nanos + weeks * WEEK_NANOS

        largest_tow_ns = max(tx_ns.values())
        pseudoranges = []
        for prn, meas in valid.items():
            delta_s = (largest_tow_ns - tx_ns[prn]) * 1e-9
            pseudoranges.append(PseudorangeMeasurement(
                prn=prn,
                pseudorange_m=(self.config.average_travel_time_s + delta_s) * CLIGHT,
                pseudorange_uncertainty_m=self._uncertainty(meas),
                pseudorange_rate_mps=meas.pseudorange_rate_mps,
                pseudorange_rate_uncertainty_mps=meas.pseudorange_rate_uncertainty_mps,
            ))
        return MeasurementSet(pseudoranges), rollover

    def filter(self, measurements: Iterable[RawMeasurement], clock: GnssClock) -> MeasurementSet:
        """
        Valid pseudorange measurements keyed by PRN

        Raises:
        -------
        TimeBaseError
            If a transmit time cannot be reconciled with the receiver week
        """
        return self._process(measurements, clock)[0]

    def preprocess(self, batch: RawMeasurementBatch) -> PreprocessedEpoch:
        """Pseudoranges plus the receiver time base of the batch"""
        measurements, rollover = self._process(batch.measurements, batch.clock)
        arrival_ns = batch.clock.time_nanos - batch.clock.full_bias_nanos
        gps_time = GpsTime.from_gps_nanos(arrival_ns)
        return PreprocessedEpoch(
            measurements=measurements,
            receiver_tow_s=gps_time.tow,
            week_number=gps_time.week,
            day_of_year=gps_time.day_of_year,
            arrival_time_since_gps_epoch_ns=arrival_ns,
            week_rollover_corrected=rollover,
        )
