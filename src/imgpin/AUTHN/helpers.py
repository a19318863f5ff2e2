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
Keychains backed by external credential helpers.

Each cloud provider ships its own way of minting registry credentials. They
are treated as opaque plugins here: a binary speaking the
docker-credential-helpers protocol, a CLI that prints a token, or an
environment variable. A helper that is missing or fails counts as "no
credentials" for that registry.
"""
import json
import logging
import os
import re
import subprocess
from typing import Callable, Mapping, Optional

from .keychain import Credentials, registry_of

logger = logging.getLogger(__name__)

DEFAULT_HELPER_TIMEOUT = 30.0

# docker-credential-helpers use this username to flag an identity token
IDENTITY_TOKEN_USERNAME = "<token>"
CREDENTIALS_NOT_FOUND = "credentials not found in native keychain"

_ECR_RE = re.compile(
    r"^(\d{12})\.dkr[.-]ecr(-fips)?\.([a-zA-Z0-9][a-zA-Z0-9-_]*)\."
    r"(amazonaws\.com(\.cn)?|sc2s\.sgov\.gov|c2s\.ic\.gov)$"
)
_ACR_SUFFIXES = (".azurecr.io", ".azurecr.cn", ".azurecr.de", ".azurecr.us")
_GITHUB_REGISTRIES = frozenset({"ghcr.io", "docker.pkg.github.com"})


class CredentialHelper:
    """
    Runs a ``docker-credential-<name>`` binary.

    The server URL goes in on stdin and a JSON document with ``Username`` and
    ``Secret`` comes back on stdout.
    """

    def __init__(self, name: str, timeout: float = DEFAULT_HELPER_TIMEOUT):
        self.name = name
        self.timeout = timeout

    @property
    def executable(self) -> str:
        return f"docker-credential-{self.name}"

    def get(self, server_url: str) -> Optional[Credentials]:
        """
        Ask the helper for credentials.

        :param server_url: Registry host the credentials are for.
        :return: Credentials, or None if the helper has none or cannot run.
        """
        try:
            proc = subprocess.run(
                [self.executable, "get"],
                input=server_url,
                capture_output=True,
                text=True,
                timeout=self.timeout,
                check=False,
            )
        except (FileNotFoundError, PermissionError) as e:
            logger.debug("credential helper %s unavailable: %s", self.executable, e)
            return None

        if proc.returncode != 0:
            output = (proc.stdout or proc.stderr or "").strip()
            if CREDENTIALS_NOT_FOUND not in output:
                logger.warning(
                    "credential helper %s failed for %s: %s", self.executable, server_url, output
                )
            return None

        try:
            payload = json.loads(proc.stdout)
        except json.JSONDecodeError:
            logger.warning("credential helper %s returned invalid JSON", self.executable)
            return None

        username = payload.get("Username") or None
        secret = payload.get("Secret") or None
        if username == IDENTITY_TOKEN_USERNAME:
            return Credentials(identity_token=secret)
        return Credentials(username=username, password=secret)

    def __repr__(self) -> str:
        return f"CredentialHelper({self.name!r})"


class HelperKeychain:
    """Consults a credential helper for the registries it serves."""

    def __init__(self, helper: CredentialHelper, serves: Callable[[str], bool]):
        self.helper = helper
        self.serves = serves

    def resolve(self, resource: str) -> Optional[Credentials]:
        registry = registry_of(resource)
        if not self.serves(registry):
            return None
        return self.helper.get(registry)

    def __repr__(self) -> str:
        return f"HelperKeychain({self.helper.name!r})"


def is_ecr_registry(registry: str) -> bool:
    return bool(_ECR_RE.match(registry))


def is_acr_registry(registry: str) -> bool:
    return registry.endswith(_ACR_SUFFIXES)


def is_google_registry(registry: str) -> bool:
    return (
        registry == "gcr.io"
        or registry.endswith(".gcr.io")
        or registry.endswith(".pkg.dev")
    )


def amazon_keychain(timeout: float = DEFAULT_HELPER_TIMEOUT) -> HelperKeychain:
    """Amazon ECR, through docker-credential-ecr-login."""
    return HelperKeychain(CredentialHelper("ecr-login", timeout), is_ecr_registry)


def azure_keychain(timeout: float = DEFAULT_HELPER_TIMEOUT) -> HelperKeychain:
    """Azure ACR, through docker-credential-acr-env."""
    return HelperKeychain(CredentialHelper("acr-env", timeout), is_acr_registry)


class GoogleKeychain:
    """
    Google Container Registry and Artifact Registry.

    Uses an OAuth2 access token from the gcloud SDK's active account.
    """

    USERNAME = "_token"

    def __init__(self, timeout: float = DEFAULT_HELPER_TIMEOUT, gcloud: str = "gcloud"):
        self.timeout = timeout
        self.gcloud = gcloud

    def resolve(self, resource: str) -> Optional[Credentials]:
        registry = registry_of(resource)
        if not is_google_registry(registry):
            return None
        token = self._access_token()
        if not token:
            return None
        return Credentials(username=self.USERNAME, password=token)

    def _access_token(self) -> Optional[str]:
        try:
            proc = subprocess.run(
                [self.gcloud, "config", "config-helper", "--format=json"],
                capture_output=True,
                text=True,
                timeout=self.timeout,
                check=False,
            )
        except (FileNotFoundError, PermissionError) as e:
            logger.debug("gcloud unavailable: %s", e)
            return None
        if proc.returncode != 0:
            logger.warning("gcloud config-helper failed: %s", proc.stderr.strip())
            return None
        try:
            payload = json.loads(proc.stdout)
        except json.JSONDecodeError:
            logger.warning("gcloud config-helper returned invalid JSON")
            return None
        return (payload.get("credential") or {}).get("access_token")


class GitHubKeychain:
    """GitHub Container Registry, authenticated with GITHUB_TOKEN."""

    def __init__(self, environ: Optional[Mapping[str, str]] = None):
        self.environ = os.environ if environ is None else environ

    def resolve(self, resource: str) -> Optional[Credentials]:
        if registry_of(resource) not in _GITHUB_REGISTRIES:
            return None
        token = self.environ.get("GITHUB_TOKEN")
        if not token:
            return None
        username = self.environ.get("GITHUB_ACTOR") or "unset"
        return Credentials(username=username, password=token)
