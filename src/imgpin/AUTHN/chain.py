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
Composition of credential sources into a single keychain.

Two shapes exist:

    - no cluster options: local docker credentials, then Google, GitHub,
      Amazon ECR and Azure ACR helpers;
    - cluster options given: pull secrets named by the explicit options, then
      pull secrets named by configuration, then local docker credentials.

The cloud helpers are not part of the second shape. Asking for cluster-scoped
credentials turns them off.
"""
import logging
from pathlib import Path
from typing import Any, List, Optional, Sequence, Union

from kubernetes import client as k8s_client
from kubernetes import config as k8s_config

from .docker_config import DockerConfigKeychain
from .helpers import GitHubKeychain, GoogleKeychain, amazon_keychain, azure_keychain
from .keychain import Keychain, MultiKeychain
from .kube_keychain import KubernetesKeychain
from ..errors import CredentialChainError
from ..MODELS.resolver_config import KubeChainOptions, ResolverConfig

logger = logging.getLogger(__name__)


def default_fallback(timeout: float) -> List[Keychain]:
    """The broad chain used when no cluster options are in play."""
    return [
        DockerConfigKeychain(timeout=timeout),
        GoogleKeychain(timeout=timeout),
        GitHubKeychain(),
        amazon_keychain(timeout),
        azure_keychain(timeout),
    ]


def build_keychain(
    kube_client: Any,
    explicit_options: Optional[KubeChainOptions],
    config: ResolverConfig,
    fallback: Optional[Sequence[Keychain]] = None,
    local: Optional[Keychain] = None,
) -> MultiKeychain:
    """
    Build the keychain for one resolution.

    :param kube_client: CoreV1Api-like client; only needed when cluster
        options are in play.
    :param explicit_options: Caller-supplied cluster options, or None.
    :param config: Process configuration; its namespace, service account and
        pull secrets form the second set of cluster options.
    :param fallback: Replaces the default multi-provider chain.
    :param local: Replaces the local docker credentials source.
    :raises CredentialChainError: If pull secrets cannot be read.
    """
    flag_options = config.flag_options()
    explicit_set = explicit_options is not None and explicit_options.is_set()

    if not explicit_set and not flag_options.is_set():
        keychains = list(fallback) if fallback is not None else default_fallback(config.timeout)
        chain = MultiKeychain(*keychains)
        logger.debug("using fallback keychain %r", chain)
        return chain

    if kube_client is None:
        raise CredentialChainError("cluster credentials requested but no Kubernetes client is available")

    keychains = []
    if explicit_options is not None:
        keychains.append(KubernetesKeychain.from_options(kube_client, explicit_options, config.timeout))
    if flag_options.is_set():
        keychains.append(KubernetesKeychain.from_options(kube_client, flag_options, config.timeout))
    keychains.append(local if local is not None else DockerConfigKeychain(timeout=config.timeout))

    chain = MultiKeychain(*keychains)
    logger.debug("using cluster keychain %r", chain)
    return chain


def load_kube_client(kubeconfig: Optional[Union[str, Path]] = None, in_cluster: bool = False) -> Any:
    """
    Create a CoreV1Api client.

    :param kubeconfig: Path to a kubeconfig file. When absent, in-cluster
        configuration is tried first, then the default kubeconfig.
    :param in_cluster: Only accept in-cluster configuration.
    :raises CredentialChainError: If no configuration can be loaded.
    """
    try:
        if kubeconfig:
            k8s_config.load_kube_config(config_file=str(kubeconfig))
        elif in_cluster:
            k8s_config.load_incluster_config()
        else:
            try:
                k8s_config.load_incluster_config()
            except k8s_config.ConfigException:
                k8s_config.load_kube_config()
    except (k8s_config.ConfigException, OSError) as e:
        raise CredentialChainError(f"cannot configure Kubernetes client: {e}") from e
    return k8s_client.CoreV1Api()


def create_in_cluster_keychain(
    explicit_options: Optional[KubeChainOptions],
    config: ResolverConfig,
) -> MultiKeychain:
    """Build a keychain using the pod's own service account credentials."""
    return build_keychain(load_kube_client(in_cluster=True), explicit_options, config)
