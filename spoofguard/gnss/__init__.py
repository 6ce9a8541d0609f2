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

"""GNSS measurement processing: preprocessing, atmosphere, least squares and spoofing checks"""

from .atmosphere import AtmosphericCorrector, ionosphere_klobuchar, troposphere_egnos
from .ephemeris import EphemerisProvider, InMemoryEphemerisProvider, corrected_transmit_time
from .geometry import dilution_of_precision, geometry_matrix
from .preprocessing import MeasurementPreprocessor
from .spoofing import SpoofingReport, SpoofingResidualFilter
from .wls import WeightedLeastSquaresSolver, WlsPhase, WlsSolution, predicted_pseudorange
