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
Matching of docker config entries against image references.

Follows the rules kubelet applies to image pull secrets:
    - the scheme of a key is ignored,
    - '/v1/' and '/v2/' API paths are equivalent to the bare host,
    - each hostname label may be a glob ('*.example.com'),
    - ports must match exactly,
    - a key with a path only matches repositories under that path.
"""
from fnmatch import fnmatchcase
from typing import Dict, List, Mapping, Optional, Tuple

from .keychain import Credentials
from ..REGISTRY.image_reference import DEFAULT_REGISTRY, DOCKER_HUB_ALIASES


def _split_location(location: str) -> Tuple[str, str, str]:
    """Break a schemeless or schemed location into (hostname, port, path)."""
    value = location
    for scheme in ("https://", "http://"):
        if value.startswith(scheme):
            value = value[len(scheme):]
            break
    host, sep, path = value.partition("/")
    path = f"/{path}" if sep else ""
    if path.startswith(("/v1/", "/v2/")):
        path = path[3:]
    if path == "/":
        path = ""

    hostname, port = host, ""
    if not host.startswith("[") or "]:" in host:
        name, colon, maybe_port = host.rpartition(":")
        if colon and maybe_port.isdigit():
            hostname, port = name, maybe_port
    if hostname in DOCKER_HUB_ALIASES:
        hostname = DEFAULT_REGISTRY
    return hostname, port, path


def urls_match(glob: str, target: str) -> bool:
    """
    Whether a keyring location matches a target 'registry/repository'.

    >>> urls_match("*.kubernetes.io", "prefix.kubernetes.io/foo")
    True
    >>> urls_match("kubernetes.io:5000", "kubernetes.io/foo")
    False
    """
    glob_host, glob_port, glob_path = _split_location(glob)
    target_host, target_port, target_path = _split_location(target)
    if glob_port != target_port:
        return False
    glob_parts = glob_host.lower().split(".")
    target_parts = target_host.lower().split(".")
    if len(glob_parts) != len(target_parts):
        return False
    if not all(fnmatchcase(t, g) for g, t in zip(glob_parts, target_parts)):
        return False
    return target_path.startswith(glob_path)


def is_default_registry_match(target: str) -> bool:
    """Whether a target would be served by Docker Hub."""
    first, sep, _ = target.partition("/")
    if not first:
        return False
    if not sep or first in DOCKER_HUB_ALIASES:
        return True
    return "." not in first and ":" not in first


class DockerKeyring:
    """
    A set of docker config entries with kubelet lookup semantics.

    More specific keys are tried first: keys are consulted in reverse
    lexical order, so 'host/team/app' beats 'host/team' beats 'host'.
    """

    def __init__(self):
        self._creds: Dict[str, List[Credentials]] = {}

    def add(self, auths: Mapping[str, Mapping]) -> None:
        """
        Add the entries of a docker config 'auths' section.

        :param auths: Mapping of registry location to auth entry.
        """
        for location, entry in auths.items():
            hostname, port, path = _split_location(location)
            key = hostname + (f":{port}" if port else "") + path
            self._creds.setdefault(key, []).append(Credentials.from_auth_entry(entry))

    def lookup(self, target: str) -> Optional[Credentials]:
        """
        Find credentials for 'registry/repository'.

        :return: The first matching credentials, or None.
        """
        for key in sorted(self._creds, reverse=True):
            if urls_match(key, target):
                return self._creds[key][0]
        if is_default_registry_match(target) and DEFAULT_REGISTRY in self._creds:
            return self._creds[DEFAULT_REGISTRY][0]
        return None

    def __len__(self) -> int:
        return len(self._creds)
