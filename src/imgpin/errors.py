# Copyright 2024 Michael Maillet, Damien Davison, Sacha Davison
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
Exceptions raised while resolving image references.
"""
from typing import Optional


class ImgpinError(Exception):
    """Base class for all imgpin errors."""


class InvalidReferenceError(ImgpinError, ValueError):
    """
    A malformed image reference.

    Subclasses ValueError so callers that only care about bad input can keep
    catching the builtin.
    """

    def __init__(self, message: str, reference: str = ""):
        super().__init__(message)
        self.reference = reference


class CredentialChainError(ImgpinError):
    """Cluster-scoped credentials could not be enumerated."""


class DigestQueryError(ImgpinError):
    """The registry could not produce a digest for a reference."""

    def __init__(self, message: str, reference: str = "", status: Optional[int] = None):
        super().__init__(message)
        self.reference = reference
        self.status = status
