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

"""Tagged result type returned at the pipeline boundaries"""

from dataclasses import dataclass
from typing import Generic, Optional, TypeVar

from .errors import ErrorKind, PositioningError, error_for_kind

T = TypeVar("T")


@dataclass(frozen=True)
class Result(Generic[T]):
    """Either a value or an error kind with a message.

    Callers branch on ``is_ok`` and, for failures, on ``error.is_skippable``
    to tell an empty epoch from a broken one.
    """
    value: Optional[T] = None
    error: Optional[ErrorKind] = None
    message: str = ""

    @classmethod
    def ok(cls, value: T) -> "Result[T]":
        return cls(value=value)

    @classmethod
    def err(cls, kind: ErrorKind, message: str = "") -> "Result[T]":
        return cls(error=kind, message=message)

    @classmethod
    def from_exception(cls, exc: PositioningError) -> "Result[T]":
        return cls(error=exc.kind, message=str(exc))

    @property
    def is_ok(self) -> bool:
        return self.error is None

    def unwrap(self) -> T:
        """Return the value or raise the matching PositioningError"""
        if self.error is not None:
            raise error_for_kind(self.error, self.message)
        return self.value
