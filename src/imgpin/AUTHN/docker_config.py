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
Default local credentials: the docker CLI config file, then podman's auth file.
"""
import json
import logging
import os
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

from .helpers import DEFAULT_HELPER_TIMEOUT, CredentialHelper
from .keychain import Credentials, registry_of
from ..errors import CredentialChainError
from ..REGISTRY.image_reference import DEFAULT_REGISTRY

logger = logging.getLogger(__name__)

# Docker Hub credentials are stored under the legacy v1 index URL
DOCKER_HUB_AUTH_KEY = "https://index.docker.io/v1/"


def _hostname(location: str) -> str:
    for scheme in ("https://", "http://"):
        if location.startswith(scheme):
            location = location[len(scheme):]
            break
    return location.partition("/")[0]


class DockerConfigKeychain:
    """
    Reads credentials the way the docker CLI stores them.

    Looks at ``$DOCKER_CONFIG/config.json`` (or ``~/.docker/config.json``)
    first and falls back to ``$REGISTRY_AUTH_FILE`` (or
    ``$XDG_RUNTIME_DIR/containers/auth.json``). Only the first file that
    exists is used. Per-registry ``credHelpers`` win over a global
    ``credsStore``, which wins over inline ``auths``.
    """

    def __init__(
        self,
        environ: Optional[Mapping[str, str]] = None,
        home: Optional[Path] = None,
        timeout: float = DEFAULT_HELPER_TIMEOUT,
    ):
        self.environ = os.environ if environ is None else environ
        self.home = home if home is not None else Path.home()
        self.timeout = timeout

    def config_paths(self) -> List[Path]:
        """Candidate config files, in lookup order."""
        paths = []
        docker_dir = self.environ.get("DOCKER_CONFIG")
        paths.append(Path(docker_dir) / "config.json" if docker_dir else self.home / ".docker" / "config.json")

        auth_file = self.environ.get("REGISTRY_AUTH_FILE")
        if auth_file:
            paths.append(Path(auth_file))
        elif self.environ.get("XDG_RUNTIME_DIR"):
            paths.append(Path(self.environ["XDG_RUNTIME_DIR"]) / "containers" / "auth.json")
        return paths

    def load_config(self) -> Optional[Dict[str, Any]]:
        """
        Load the first config file that exists.

        :raises CredentialChainError: If that file cannot be read or parsed.
        """
        for path in self.config_paths():
            if not path.is_file():
                continue
            logger.debug("reading registry credentials from %s", path)
            try:
                with open(path, "r") as f:
                    config = json.load(f)
            except (OSError, json.JSONDecodeError) as e:
                raise CredentialChainError(f"cannot read docker config {path}: {e}") from e
            if not isinstance(config, dict):
                raise CredentialChainError(f"cannot read docker config {path}: expected a JSON object")
            for section in ("auths", "credHelpers"):
                if not isinstance(config.get(section) or {}, dict):
                    raise CredentialChainError(f"cannot read docker config {path}: malformed {section!r}")
            return config
        return None

    def resolve(self, resource: str) -> Optional[Credentials]:
        registry = registry_of(resource)
        key = DOCKER_HUB_AUTH_KEY if registry == DEFAULT_REGISTRY else registry

        config = self.load_config()
        if not config:
            return None

        helper_name = (config.get("credHelpers") or {}).get(key)
        if helper_name:
            return CredentialHelper(helper_name, self.timeout).get(key)

        store = config.get("credsStore")
        if store:
            creds = CredentialHelper(store, self.timeout).get(key)
            if creds is not None:
                return creds

        auths = config.get("auths") or {}
        entry = auths.get(key)
        if entry is None:
            wanted = _hostname(key)
            for location, candidate in auths.items():
                if _hostname(location) == wanted:
                    entry = candidate
                    break
        if not entry:
            return None
        try:
            return Credentials.from_auth_entry(entry)
        except ValueError as e:
            raise CredentialChainError(f"bad docker config entry for {key}: {e}") from e

    def __repr__(self) -> str:
        return "DockerConfigKeychain()"
