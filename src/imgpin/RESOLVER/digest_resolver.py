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
Turns an image reference into a digest-pinned one.
"""
import logging
from typing import Any, Optional, Protocol, Sequence

from ..AUTHN.chain import build_keychain
from ..AUTHN.keychain import Keychain
from ..MODELS.resolver_config import KubeChainOptions, ResolverConfig
from ..REGISTRY.image_reference import image_without_digest
from ..REGISTRY.insecure import InsecureRegistryClassifier
from ..REGISTRY.registry_client import RegistryClient

logger = logging.getLogger(__name__)


class DigestQuery(Protocol):
    """Anything that can ask a registry for the digest of a reference."""

    def digest(self, reference: str, keychain: Keychain, insecure: bool = False) -> str:
        ...


class DigestResolver:
    """
    Resolves references to 'reference@digest'.

    Each call is a single attempt: the reference is stripped of any digest, a
    keychain is built, the TLS policy is decided and the registry is queried
    once. Errors from any step are raised unchanged.
    """

    def __init__(
        self,
        config: ResolverConfig,
        client: Optional[DigestQuery] = None,
        fallback: Optional[Sequence[Keychain]] = None,
        local: Optional[Keychain] = None,
    ):
        """
        :param config: Process-wide configuration, built once at startup.
        :param client: Digest query service. Defaults to a RegistryClient.
        :param fallback: Replaces the default multi-provider keychain.
        :param local: Replaces the local docker credentials keychain.
        """
        self.config = config
        self.client = client if client is not None else RegistryClient(timeout=config.timeout)
        self.classifier = InsecureRegistryClassifier(config.insecure_registries)
        self.fallback = fallback
        self.local = local

    def resolve(
        self,
        image: str,
        kube_client: Any = None,
        explicit_options: Optional[KubeChainOptions] = None,
    ) -> str:
        """
        Pin an image to its current digest.

        :param image: Image reference; an existing digest is replaced.
        :param kube_client: CoreV1Api-like client for pull secret lookups.
        :param explicit_options: Cluster options that take precedence over
            the configured ones.
        :return: The digest-free reference followed by '@' and the digest.
        :raises InvalidReferenceError: If the reference has a digest but no name.
        :raises CredentialChainError: If cluster credentials cannot be read.
        :raises DigestQueryError: If the registry query fails.
        """
        image = image_without_digest(image)
        if self.config.skip_digest_resolution:
            logger.debug("digest resolution disabled, returning %s", image)
            return image

        keychain = build_keychain(
            kube_client, explicit_options, self.config, fallback=self.fallback, local=self.local
        )
        insecure = self.classifier.is_insecure(image)
        digest = self.client.digest(image, keychain, insecure=insecure)
        logger.debug("resolved %s to %s", image, digest)
        return f"{image}@{digest}"


def image_with_digest(
    image: str,
    config: ResolverConfig,
    kube_client: Any = None,
    explicit_options: Optional[KubeChainOptions] = None,
) -> str:
    """One-shot DigestResolver(config).resolve(...)."""
    return DigestResolver(config).resolve(image, kube_client, explicit_options)
