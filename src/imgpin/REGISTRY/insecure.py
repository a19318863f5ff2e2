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
TLS trust decisions for registry hosts.

Registries on ICANN-delegated domains are expected to present valid
certificates. Anything else (cluster-internal names, made-up domains, IP
addresses, hosts with an explicit port) is probably a private registry running
with a self-signed certificate, so certificate verification is skipped for it.
Operators can force a host into the insecure set with an exception list.
"""
import logging
from typing import FrozenSet, Iterable, Optional

import tldextract

logger = logging.getLogger(__name__)

# Bundled public suffix snapshot only; never fetched over the network.
_suffix_extractor = tldextract.TLDExtract(
    suffix_list_urls=(),
    cache_dir=None,
    include_psl_private_domains=True,
)


def has_icann_suffix(host: str) -> bool:
    """
    Whether a host ends in an ICANN public suffix.

    A host carrying a port or written as an IP literal never does, and neither
    does one under a suffix from the private section of the list.
    """
    if not host or ":" in host or host.startswith("["):
        return False
    result = _suffix_extractor(host)
    return bool(result.suffix) and not result.is_private


class InsecureRegistryClassifier:
    """
    Decides whether TLS verification should be skipped for a reference.

    The exception set is frozen at construction, so one instance can be
    shared freely between threads.
    """

    def __init__(self, exceptions: Optional[Iterable[str]] = None):
        """
        :param exceptions: Registry hosts (with port, if any) that are always insecure.
        """
        self.exceptions: FrozenSet[str] = frozenset(exceptions or ())

    def is_insecure(self, ref: str) -> bool:
        """
        Classify the first '/'-delimited segment of a raw reference.

        :param ref: Image reference or bare registry host.
        :return: True if certificate verification should be skipped.
        """
        host, sep, _ = ref.partition("/")
        if "." not in host:
            return False
        if host in self.exceptions:
            logger.debug("registry %s is listed as insecure", host)
            return True
        if not sep:
            # A lone 'name:1.2' is a repository with a tag, not a host
            return False
        if not has_icann_suffix(host):
            logger.debug("registry %s has no public suffix, skipping TLS verification", host)
            return True
        return False


def is_insecure(ref: str, exceptions: Optional[Iterable[str]] = None) -> bool:
    """Shortcut for a one-off InsecureRegistryClassifier lookup."""
    return InsecureRegistryClassifier(exceptions).is_insecure(ref)
