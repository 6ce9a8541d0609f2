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
spoofguard - GNSS positioning with spoofing detection

Weighted least squares position/velocity from Android raw GNSS
measurements, exclusion of satellites whose pseudoranges disagree with a
trusted reference position, and Kalman fusion with IMU dead reckoning.
"""

__version__ = "0.1.0"
__title__ = "spoofguard"
__description__ = "GNSS positioning with spoofing detection and IMU fusion"

from .config import PositioningConfig
from .context import PositioningContext, reference_position_from_e7
from .core import *
from .coordinate import *
from .pipeline import PositioningEngine
