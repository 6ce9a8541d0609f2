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

"""GNSS constants and processing thresholds"""

import numpy as np

# Physical Constants
CLIGHT = 299792458.0  # speed of light (m/s)

# GPS frequencies
FREQ_L1 = 1.57542E9   # L1 frequency (Hz)

# WGS84 parameters
RE_WGS84 = 6378137.0                # earth semimajor axis (m)
FE_WGS84 = 1.0 / 298.257223563      # earth flattening
OMGE = 7.2921151467E-5              # earth angular velocity (rad/s)

# Time
SECONDS_IN_WEEK = 604800
HALF_WEEK_SECONDS = SECONDS_IN_WEEK / 2
WEEK_NANOS = SECONDS_IN_WEEK * 1_000_000_000
GPST0 = [1980, 1, 6, 0, 0, 0]       # GPS time reference

# Android GnssMeasurement constants
CONSTELLATION_GPS = 1
STATE_CODE_LOCK = 1
STATE_TOW_DECODED = 8
MAX_PRN = 32

# Preprocessing thresholds
MAX_TOW_UNCERTAINTY_NS = 500.0      # received sv time uncertainty (ns)
MAX_PRR_UNCERTAINTY_MPS = 10.0      # pseudorange rate uncertainty (m/s)
MIN_CN0_DBHZ = 18.0
AVERAGE_TRAVEL_TIME_S = 70.0e-3
MAX_ROLLOVER_RESIDUAL_S = 10.0

# DLL tracking noise model (code chip width, correlator spacing, averaging time)
GPS_CHIP_WIDTH_S = 1.0e-6
GPS_CORRELATOR_SPACING_CHIPS = 0.1
GPS_DLL_AVERAGING_TIME_S = 20.0e-3

# Weighted least squares
MIN_SATELLITES = 4
LEAST_SQUARES_TOLERANCE_M = 4.0e-8
ATMOSPHERIC_CORRECTION_THRESHOLD_M = 1000.0
OUTLIER_RESIDUAL_THRESHOLD_M = 20.0
MAX_LEAST_SQUARES_ITERATIONS = 100
COVARIANCE_DETERMINANT_TOLERANCE = 1.0e-10

# Spoofing residual filter
SPOOFING_RESIDUAL_LIMIT_M = 200.0
SPOOFING_WARMUP_EPOCHS = 10

# Sensor fusion
FUSION_PROCESS_NOISE = np.array([100.0, 100.0, 100.0, 0.5, 0.5, 0.5])
FUSION_MEASUREMENT_NOISE = 0.1
IMU_SETTLING_SAMPLES = 200
