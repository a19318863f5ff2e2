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
Registry credentials and the keychain abstraction.

A keychain is anything with a ``resolve(resource)`` method, where resource is
a registry host optionally followed by ``/repository``. It returns
Credentials, or None when it has nothing for that registry.
"""
import base64
import binascii
from dataclasses import dataclass
from typing import Any, Dict, Optional, Protocol, Tuple


@dataclass(frozen=True)
class Credentials:
    """Authentication material for a registry."""

    username: Optional[str] = None
    password: Optional[str] = None
    identity_token: Optional[str] = None
    registry_token: Optional[str] = None

    @classmethod
    def from_auth_entry(cls, entry: Dict[str, Any]) -> "Credentials":
        """
        Build credentials from a docker config 'auths' entry.

        The base64 'auth' field, when present, overrides username and password.
        """
        if not isinstance(entry, dict):
            raise ValueError(f"auth entry must be a mapping, not {type(entry).__name__}")
        username = entry.get("username") or None
        password = entry.get("password") or None
        encoded = entry.get("auth")
        if encoded:
            try:
                decoded = base64.b64decode(encoded).decode("utf-8")
            except (binascii.Error, UnicodeDecodeError, TypeError) as e:
                raise ValueError(f"invalid auth field in docker config: {e}") from e
            username, sep, password = decoded.partition(":")
            if not sep:
                raise ValueError("invalid auth field in docker config: missing ':'")
        return cls(
            username=username,
            password=password,
            identity_token=entry.get("identitytoken") or None,
            registry_token=entry.get("registrytoken") or None,
        )

    @property
    def is_anonymous(self) -> bool:
        return not (self.username or self.password or self.identity_token or self.registry_token)

    def basic_auth(self) -> Optional[str]:
        """Value for a Basic Authorization header, if a username is known."""
        if not self.username:
            return None
        raw = f"{self.username}:{self.password or ''}".encode()
        return f"Basic {base64.b64encode(raw).decode()}"

    def __repr__(self) -> str:
        return f"Credentials(username={self.username!r}, secret={'***' if not self.is_anonymous else None})"


ANONYMOUS = Credentials()


class Keychain(Protocol):
    """Something that can find credentials for a registry."""

    def resolve(self, resource: str) -> Optional[Credentials]:
        ...


def registry_of(resource: str) -> str:
    """The registry host part of a resource string."""
    return resource.partition("/")[0]


class MultiKeychain:
    """
    Tries several keychains in order.

    The first keychain that returns non-anonymous credentials wins. When every
    keychain comes back empty the registry is accessed anonymously.
    """

    def __init__(self, *keychains: Keychain):
        self.keychains: Tuple[Keychain, ...] = tuple(keychains)

    def resolve(self, resource: str) -> Credentials:
        for keychain in self.keychains:
            creds = keychain.resolve(resource)
            if creds is not None and not creds.is_anonymous:
                return creds
        return ANONYMOUS

    def __len__(self) -> int:
        return len(self.keychains)

    def __repr__(self) -> str:
        names = ", ".join(type(k).__name__ for k in self.keychains)
        return f"MultiKeychain({names})"
