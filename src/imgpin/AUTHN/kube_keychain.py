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
Credentials from Kubernetes image pull secrets.

Reads the explicitly named pull secrets of a namespace plus those attached to
a service account, the same set kubelet would use to pull a pod's images.
"""
import base64
import binascii
import json
import logging
from typing import Any, Callable, Dict, List, Mapping, Optional

import urllib3
from kubernetes.client.exceptions import ApiException

from .keychain import Credentials
from .keyring import DockerKeyring
from ..errors import CredentialChainError
from ..MODELS.resolver_config import DEFAULT_NAMESPACE, KubeChainOptions

logger = logging.getLogger(__name__)

DEFAULT_SERVICE_ACCOUNT = "default"
# Service account name that turns off the service account lookup
NO_SERVICE_ACCOUNT = "no service account"

DOCKER_CONFIG_JSON_KEY = ".dockerconfigjson"
DOCKER_CFG_KEY = ".dockercfg"

_CLIENT_ERRORS = (ApiException, urllib3.exceptions.HTTPError, OSError)


def pull_secret_auths(secret: Any) -> Dict[str, Mapping]:
    """
    Extract the docker 'auths' mapping from a pull secret.

    Handles both the kubernetes.io/dockerconfigjson and the legacy
    kubernetes.io/dockercfg layouts. Other secrets yield nothing.
    """
    data = secret.data or {}
    try:
        if DOCKER_CONFIG_JSON_KEY in data:
            config = json.loads(base64.b64decode(data[DOCKER_CONFIG_JSON_KEY]))
            if not isinstance(config, dict):
                raise ValueError("expected a JSON object")
            auths = config.get("auths") or {}
        elif DOCKER_CFG_KEY in data:
            auths = json.loads(base64.b64decode(data[DOCKER_CFG_KEY]))
        else:
            return {}
        if not isinstance(auths, dict):
            raise ValueError("'auths' must be a JSON object")
    except (binascii.Error, ValueError) as e:
        raise CredentialChainError(f"pull secret {_secret_name(secret)} is malformed: {e}") from e
    return auths


def _secret_name(secret: Any) -> str:
    return getattr(secret.metadata, "name", None) or "?"



class KubernetesKeychain:
    """
    Looks registries up in the pull secrets of one namespace.
    """

    def __init__(self, keyring: DockerKeyring):
        self.keyring = keyring

    @classmethod
    def from_options(
        cls,
        client: Any,
        options: KubeChainOptions,
        timeout: Optional[float] = None,
    ) -> "KubernetesKeychain":
        """
        Read pull secrets through a CoreV1Api-like client.

        Secrets and service accounts that do not exist are skipped with a
        warning. Any other API failure aborts.

        :param client: Object with read_namespaced_secret and
            read_namespaced_service_account.
        :param options: Namespace, service account and pull secret names.
        :param timeout: Per-request timeout in seconds.
        :raises CredentialChainError: If the cluster cannot be queried.
        """
        namespace = options.namespace or DEFAULT_NAMESPACE
        service_account = options.service_account_name or DEFAULT_SERVICE_ACCOUNT

        secrets: List[Any] = []
        for name in options.image_pull_secrets:
            secret = _read(client.read_namespaced_secret, "secret", name, namespace, timeout)
            if secret is not None:
                secrets.append(secret)

        if service_account != NO_SERVICE_ACCOUNT:
            account = _read(
                client.read_namespaced_service_account,
                "serviceaccount",
                service_account,
                namespace,
                timeout,
            )
            if account is not None:
                for ref in account.image_pull_secrets or []:
                    secret = _read(client.read_namespaced_secret, "secret", ref.name, namespace, timeout)
                    if secret is not None:
                        secrets.append(secret)

        keyring = DockerKeyring()
        for secret in secrets:
            try:
                keyring.add(pull_secret_auths(secret))
            except ValueError as e:
                raise CredentialChainError(f"pull secret {_secret_name(secret)} is malformed: {e}") from e
        logger.debug(
            "loaded %d pull secret(s) from namespace %s (service account %s)",
            len(secrets),
            namespace,
            service_account,
        )
        return cls(keyring)

    def resolve(self, resource: str) -> Optional[Credentials]:
        return self.keyring.lookup(resource)

    def __repr__(self) -> str:
        return f"KubernetesKeychain({len(self.keyring)} location(s))"


def _read(read: Callable[..., Any], kind: str, name: str, namespace: str, timeout: Optional[float]) -> Any:
    kwargs = {"_request_timeout": timeout} if timeout else {}
    try:
        return read(name, namespace, **kwargs)
    except ApiException as e:
        if e.status == 404:
            logger.warning("%s %s/%s not found; ignoring", kind, namespace, name)
            return None
        raise CredentialChainError(f"cannot read {kind} {namespace}/{name}: {e.reason}") from e
    except _CLIENT_ERRORS as e:
        raise CredentialChainError(f"cannot read {kind} {namespace}/{name}: {e}") from e
