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
Docker registry client for looking up manifest digests.
Implements the parts of the Docker Registry HTTP API V2 needed to turn a tag
into a content digest: a manifest HEAD (or GET) plus token authentication.
"""

import hashlib
import json
import logging
import re
import ssl
from typing import Dict, Tuple, Union
from urllib.error import HTTPError, URLError
from urllib.parse import urlencode
from urllib.request import Request, urlopen

from .image_reference import ImageReference
from ..AUTHN.keychain import ANONYMOUS, Credentials, Keychain
from ..errors import DigestQueryError

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30.0
CLIENT_ID = "imgpin"

MANIFEST_MEDIA_TYPES = (
    "application/vnd.docker.distribution.manifest.v2+json",
    "application/vnd.docker.distribution.manifest.list.v2+json",
    "application/vnd.oci.image.manifest.v1+json",
    "application/vnd.oci.image.index.v1+json",
)

_CHALLENGE_PARAM_RE = re.compile(r'(\w+)="([^"]*)"')


def parse_challenge(header: str) -> Tuple[str, Dict[str, str]]:
    """
    Parse a WWW-Authenticate header.

    >>> parse_challenge('Bearer realm="https://auth.docker.io/token",service="registry.docker.io"')
    ('bearer', {'realm': 'https://auth.docker.io/token', 'service': 'registry.docker.io'})
    """
    scheme, _, params = header.strip().partition(" ")
    return scheme.lower(), dict(_CHALLENGE_PARAM_RE.findall(params))


class RegistryClient:
    """
    Client for asking registries which digest a reference points at.
    Supports Docker Hub and OCI-compatible registries.
    """

    def __init__(self, timeout: float = DEFAULT_TIMEOUT):
        """
        Initialize the registry client.

        Args:
            timeout: Seconds to wait on each HTTP request.
        """
        self.timeout = timeout

    def digest(
        self,
        reference: Union[str, ImageReference],
        keychain: Keychain,
        insecure: bool = False,
    ) -> str:
        """
        Get the content digest of an image.

        Args:
            reference: Image reference; the tag defaults to 'latest'.
            keychain: Where to find credentials for the registry.
            insecure: Skip TLS certificate verification.

        Returns:
            Digest in 'algorithm:hex' form.

        Raises:
            DigestQueryError: If the registry cannot be reached or refuses.
        """
        ref = reference if isinstance(reference, ImageReference) else ImageReference.parse(reference)
        creds = keychain.resolve(ref.context) or ANONYMOUS
        ssl_context = self._ssl_context(insecure)
        url = f"{ref.registry_url}/v2/{ref.repository}/manifests/{ref.identifier}"
        headers = {"Accept": ", ".join(MANIFEST_MEDIA_TYPES)}

        try:
            try:
                return self._manifest_digest(url, headers, ssl_context)
            except HTTPError as e:
                if e.code != 401:
                    raise
                challenge = e.headers.get("WWW-Authenticate", "")
            headers["Authorization"] = self._authorization(ref, creds, challenge, ssl_context)
            return self._manifest_digest(url, headers, ssl_context)
        except HTTPError as e:
            raise DigestQueryError(
                f"registry returned {e.code} for {ref.name}: {e.reason}", ref.name, e.code
            ) from e
        except (URLError, OSError) as e:
            raise DigestQueryError(f"cannot reach {ref.registry}: {e}", ref.name) from e

    def _ssl_context(self, insecure: bool) -> ssl.SSLContext:
        context = ssl.create_default_context()
        if insecure:
            context.check_hostname = False
            context.verify_mode = ssl.CERT_NONE
        return context

    def _open(self, request: Request, ssl_context: ssl.SSLContext):
        logger.debug("%s %s", request.get_method(), request.full_url)
        return urlopen(request, timeout=self.timeout, context=ssl_context)

    def _manifest_digest(self, url: str, headers: Dict[str, str], ssl_context: ssl.SSLContext) -> str:
        """HEAD the manifest; fall back to hashing a GET when no digest header comes back."""
        with self._open(Request(url, headers=headers, method="HEAD"), ssl_context) as response:
            digest = response.headers.get("Docker-Content-Digest")
        if digest:
            return digest

        with self._open(Request(url, headers=headers, method="GET"), ssl_context) as response:
            content = response.read()
            digest = response.headers.get("Docker-Content-Digest")
        return digest or f"sha256:{hashlib.sha256(content).hexdigest()}"

    def _authorization(
        self,
        ref: ImageReference,
        creds: Credentials,
        challenge: str,
        ssl_context: ssl.SSLContext,
    ) -> str:
        """Answer a 401 challenge with an Authorization header value."""
        scheme, params = parse_challenge(challenge)
        if scheme == "basic":
            basic = creds.basic_auth()
            if not basic:
                raise DigestQueryError(f"{ref.registry} requires credentials", ref.name, 401)
            return basic
        if scheme != "bearer" or "realm" not in params:
            raise DigestQueryError(
                f"unsupported authentication challenge from {ref.registry}: {challenge!r}", ref.name, 401
            )
        if creds.registry_token:
            return f"Bearer {creds.registry_token}"

        realm = params["realm"]
        query = {"scope": params.get("scope") or f"repository:{ref.repository}:pull"}
        if params.get("service"):
            query["service"] = params["service"]

        if creds.identity_token:
            # OAuth2 refresh token grant
            form = dict(query, grant_type="refresh_token", refresh_token=creds.identity_token, client_id=CLIENT_ID)
            request = Request(
                realm,
                data=urlencode(form).encode(),
                headers={"Content-Type": "application/x-www-form-urlencoded"},
                method="POST",
            )
        else:
            request = Request(f"{realm}?{urlencode(query)}")
            basic = creds.basic_auth()
            if basic:
                request.add_header("Authorization", basic)

        with self._open(request, ssl_context) as response:
            try:
                data = json.loads(response.read().decode())
            except (ValueError, UnicodeDecodeError) as e:
                raise DigestQueryError(f"invalid token response from {realm}", ref.name) from e
        token = data.get("token") or data.get("access_token")
        if not token:
            raise DigestQueryError(f"no token in response from {realm}", ref.name)
        return f"Bearer {token}"
