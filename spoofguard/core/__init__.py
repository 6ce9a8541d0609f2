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

"""Core components shared by the positioning pipeline.

- **Constants**: physical constants, Android measurement flags and the
  thresholds used by preprocessing, least squares and spoofing detection
- **Data Structures**: raw measurements, map-by-PRN measurement sets,
  receiver state, residual snapshots and per-epoch solutions
- **Errors / Result**: typed per-epoch failures and the tagged result
  returned at pipeline boundaries
- **Time**: GPS week/time-of-week handling
"""

from .constants import *
from .data_structures import *
from .errors import *
from .result import Result
from .time import *
