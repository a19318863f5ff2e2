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
Image reference parsing and normalization.
Parses Docker image references like 'nginx:1.0.1' or
'docker.io/library/mariadb:10.8.2@sha256:...' into canonical components.
"""

import re
from dataclasses import dataclass
from typing import Tuple

from ..errors import InvalidReferenceError

DEFAULT_REGISTRY = "index.docker.io"
DOCKER_HUB_ALIASES = frozenset({"docker.io", "index.docker.io"})
OFFICIAL_NAMESPACE = "library"
DEFAULT_TAG = "latest"

MAX_REPOSITORY_LENGTH = 255

_TAG_RE = re.compile(r"[A-Za-z0-9_][A-Za-z0-9_.-]{0,127}")
_PATH_COMPONENT_RE = re.compile(r"[a-z0-9]+(?:(?:\.|_|__|-+)[a-z0-9]+)*")
_DIGEST_RE = re.compile(r"([a-z0-9]+(?:[+._-][a-z0-9]+)*):([a-fA-F0-9]{32,})")
_LABEL = r"[a-zA-Z0-9](?:[a-zA-Z0-9-]*[a-zA-Z0-9])?"
_REGISTRY_RE = re.compile(
    rf"(?:{_LABEL}(?:\.{_LABEL})*|\[[0-9a-fA-F:.]+\])(?::[0-9]+)?"
)

# Registered algorithms have a fixed, lowercase hex encoding.
_DIGEST_HEX_LENGTHS = {"sha256": 64, "sha384": 96, "sha512": 128}


def split_digest(reference: str) -> Tuple[str, str]:
    """
    Split a reference on its last '@'.

    Returns:
        (rest, digest); digest is empty when the reference has none.
    """
    rest, sep, digest = reference.rpartition("@")
    if not sep:
        return reference, ""
    if not rest:
        raise InvalidReferenceError(
            f"reference has digest but no repository: {reference!r}", reference
        )
    return rest, digest


def image_without_digest(image: str) -> str:
    """Drop the '@algorithm:hex' part of an image, if any."""
    return split_digest(image)[0]


def is_registry_segment(segment: str) -> bool:
    """Whether the first path segment of a reference names a registry host."""
    return "." in segment or ":" in segment or segment == "localhost"


def _check_digest(digest: str, reference: str) -> None:
    match = _DIGEST_RE.fullmatch(digest)
    if not match:
        raise InvalidReferenceError(f"invalid digest {digest!r}", reference)
    algorithm, encoded = match.groups()
    expected = _DIGEST_HEX_LENGTHS.get(algorithm)
    if expected is not None and (len(encoded) != expected or encoded != encoded.lower()):
        raise InvalidReferenceError(
            f"invalid {algorithm} digest {digest!r}: expected {expected} lowercase hex characters",
            reference,
        )


def _check_repository(repository: str, reference: str) -> None:
    if not repository:
        raise InvalidReferenceError(f"empty repository in {reference!r}", reference)
    if len(repository) > MAX_REPOSITORY_LENGTH:
        raise InvalidReferenceError(
            f"repository {repository!r} is longer than {MAX_REPOSITORY_LENGTH} characters",
            reference,
        )
    for component in repository.split("/"):
        if not _PATH_COMPONENT_RE.fullmatch(component):
            raise InvalidReferenceError(
                f"invalid repository component {component!r}", reference
            )


@dataclass(frozen=True)
class ImageReference:
    """
    Parsed and normalized image reference.

    Examples:
        - nginx -> index.docker.io/library/nginx
        - nginx:1.0.1 -> index.docker.io/library/nginx:1.0.1
        - kubedb/ui-server:1.10-v2 -> index.docker.io/kubedb/ui-server:1.10-v2
        - gcr.io/project/image:1.10@sha256:cb5c... -> gcr.io/project/image@sha256:cb5c...

    An empty tag or digest means unset. The parser never defaults the tag.
    """

    original: str
    registry: str
    repository: str
    tag: str = ""
    digest: str = ""

    @classmethod
    def parse(cls, reference: str, default_registry: str = DEFAULT_REGISTRY) -> "ImageReference":
        """
        Parse an image reference string.

        Args:
            reference: Image reference string (e.g., 'nginx:latest', 'myuser/myimage:v1')
            default_registry: Registry used when the reference names none.

        Returns:
            Parsed ImageReference object.

        Raises:
            InvalidReferenceError: If any part of the reference is malformed.
        """
        if not reference:
            raise InvalidReferenceError("empty image reference", reference)

        rest, digest = split_digest(reference)
        if "@" in rest:
            raise InvalidReferenceError(f"unexpected '@' in {rest!r}", reference)
        if rest != reference:
            _check_digest(digest, reference)

        # A first segment is a registry only if it looks like a host
        registry = default_registry
        remainder = rest
        first, sep, after = rest.partition("/")
        if sep and is_registry_segment(first):
            if not _REGISTRY_RE.fullmatch(first):
                raise InvalidReferenceError(f"invalid registry {first!r}", reference)
            registry = first
            remainder = after
        if registry in DOCKER_HUB_ALIASES:
            registry = DEFAULT_REGISTRY

        # Text after the last ':' is a tag unless it belongs to a path
        repository, tag = remainder, ""
        base, sep, candidate = remainder.rpartition(":")
        if sep and "/" not in candidate:
            if not _TAG_RE.fullmatch(candidate):
                raise InvalidReferenceError(f"invalid tag {candidate!r}", reference)
            repository, tag = base, candidate

        if registry == DEFAULT_REGISTRY and repository and "/" not in repository:
            repository = f"{OFFICIAL_NAMESPACE}/{repository}"
        _check_repository(repository, reference)

        return cls(
            original=reference,
            registry=registry,
            repository=repository,
            tag=tag,
            digest=digest,
        )

    @property
    def context(self) -> str:
        """Registry and repository, without tag or digest."""
        return f"{self.registry}/{self.repository}"

    @property
    def name(self) -> str:
        """Canonical name. A digest wins over a tag."""
        if self.digest:
            return f"{self.context}@{self.digest}"
        if self.tag:
            return f"{self.context}:{self.tag}"
        return self.context

    @property
    def identifier(self) -> str:
        """What to ask the registry for: the digest, the tag, or 'latest'."""
        return self.digest or self.tag or DEFAULT_TAG

    @property
    def registry_url(self) -> str:
        """Get the registry URL for API calls."""
        if self.registry == DEFAULT_REGISTRY:
            return "https://registry-1.docker.io"
        return f"https://{self.registry}"

    def __str__(self) -> str:
        return self.name

    def __repr__(self) -> str:
        return f"ImageReference({self.name})"


def parse_reference(reference: str, default_registry: str = DEFAULT_REGISTRY) -> ImageReference:
    """Parse an image reference string into an ImageReference."""
    return ImageReference.parse(reference, default_registry=default_registry)
