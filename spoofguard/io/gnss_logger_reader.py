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

"""Reader for Android GnssLogger text logs.

GnssLogger writes one ``Raw,...`` line per satellite measurement. The
column names come from the ``# Raw,...`` header line; all other record
types (Fix, Status, UncalAccel, ...) are ignored.
"""

import io
import logging
from pathlib import Path
from typing import List, Union

import numpy as np
import pandas as pd

from ..core.constants import FREQ_L1
from ..core.data_structures import GnssClock, RawMeasurement, RawMeasurementBatch

logger = logging.getLogger(__name__)

RAW_PREFIX = "Raw,"
RAW_HEADER_PREFIX = "# Raw,"

# Nanosecond counters exceed float precision
INTEGER_COLUMNS = {
    'TimeNanos': 'Int64',
    'FullBiasNanos': 'Int64',
    'ReceivedSvTimeNanos': 'Int64',
}

REQUIRED_COLUMNS = (
    'TimeNanos', 'FullBiasNanos', 'Svid', 'ConstellationType', 'State',
    'ReceivedSvTimeNanos', 'ReceivedSvTimeUncertaintyNanos', 'Cn0DbHz',
    'PseudorangeRateMetersPerSecond', 'PseudorangeRateUncertaintyMetersPerSecond',
)


def read_raw_dataframe(file_path: Union[str, Path]) -> pd.DataFrame:
    """
    Raw measurement records of a GnssLogger file as a DataFrame

    Parameters:
    -----------
    file_path : str or Path
        GnssLogger log file

    Returns:
    --------
    pd.DataFrame
        One row per measurement, columns named as in the header

    Raises:
    -------
    FileNotFoundError
        If the file does not exist
    ValueError
        If the file has no Raw header or lacks required columns
    """
    file_path = Path(file_path)
    if not file_path.exists():
        raise FileNotFoundError(f"GnssLogger file not found: {file_path}")

    header = None
    rows = []
    with open(file_path, 'r') as f:
        for line in f:
            line = line.strip()
            if line.startswith(RAW_HEADER_PREFIX):
                header = line[2:]
            elif line.startswith(RAW_PREFIX):
                rows.append(line)

    if header is None:
        raise ValueError(f"No '{RAW_HEADER_PREFIX}' header in {file_path}")

    columns = header.split(',')
    missing = [col for col in REQUIRED_COLUMNS if col not in columns]
    if missing:
        raise ValueError(f"GnssLogger header lacks columns: {missing}")

    text = '\n'.join([header] + rows)
    dtypes = {col: dtype for col, dtype in INTEGER_COLUMNS.items() if col in columns}
    df = pd.read_csv(io.StringIO(text), dtype=dtypes)
    logger.info(f"Read {len(df)} raw measurements from {file_path.name}")
    return df


def _value(row, column, default=0.0):
    value = row.get(column, default)
    if pd.isna(value):
        return default
    return value


def _measurement(row) -> RawMeasurement:
    return RawMeasurement(
        svid=int(row['Svid']),
        constellation_type=int(row['ConstellationType']),
        state=int(_value(row, 'State', 0)),
        received_sv_time_nanos=int(_value(row, 'ReceivedSvTimeNanos', 0)),
        received_sv_time_uncertainty_nanos=float(_value(row, 'ReceivedSvTimeUncertaintyNanos',
                                                        np.inf)),
        cn0_dbhz=float(_value(row, 'Cn0DbHz')),
        pseudorange_rate_mps=float(_value(row, 'PseudorangeRateMetersPerSecond')),
        pseudorange_rate_uncertainty_mps=float(
            _value(row, 'PseudorangeRateUncertaintyMetersPerSecond', np.inf)),
        time_offset_nanos=float(_value(row, 'TimeOffsetNanos')),
        accumulated_delta_range_m=float(_value(row, 'AccumulatedDeltaRangeMeters')),
        accumulated_delta_range_state=int(_value(row, 'AccumulatedDeltaRangeState', 0)),
        accumulated_delta_range_uncertainty_m=float(
            _value(row, 'AccumulatedDeltaRangeUncertaintyMeters')),
        carrier_frequency_hz=float(_value(row, 'CarrierFrequencyHz', FREQ_L1)),
    )


def batches_from_dataframe(df: pd.DataFrame) -> List[RawMeasurementBatch]:
    """Group raw rows into epochs sharing the same TimeNanos"""
    batches = []
    for time_nanos, group in df.groupby('TimeNanos', sort=False):
        first = group.iloc[0]
        clock = GnssClock(
            time_nanos=int(time_nanos),
            full_bias_nanos=int(_value(first, 'FullBiasNanos', 0)),
            bias_nanos=float(_value(first, 'BiasNanos')),
            drift_nanos_per_second=float(_value(first, 'DriftNanosPerSecond')),
            hardware_clock_discontinuity_count=int(
                _value(first, 'HardwareClockDiscontinuityCount', 0)),
        )
        measurements = tuple(_measurement(row) for _, row in group.iterrows())
        batches.append(RawMeasurementBatch(clock, measurements))
    return batches


def read_gnss_logger(file_path: Union[str, Path]) -> List[RawMeasurementBatch]:
    """Measurement batches of a GnssLogger file, in file order"""
    return batches_from_dataframe(read_raw_dataframe(file_path))
