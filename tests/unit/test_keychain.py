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
Unit tests for credentials and keychain composition.
"""
import base64

import pytest

from imgpin.AUTHN.keychain import ANONYMOUS, Credentials, MultiKeychain, registry_of


class FakeKeychain:
    """Returns fixed credentials for every registry and records the calls."""

    def __init__(self, creds=None):
        self.creds = creds
        self.calls = []

    def resolve(self, resource):
        self.calls.append(resource)
        return self.creds


class TestCredentials:
    """Tests for Credentials."""

    def test_from_auth_field(self):
        """Test decoding the base64 auth field."""
        auth = base64.b64encode(b"alice:s3cr:et").decode()
        creds = Credentials.from_auth_entry({"auth": auth})
        assert creds.username == "alice"
        assert creds.password == "s3cr:et"

    def test_from_username_password(self):
        """Test explicit username and password fields."""
        creds = Credentials.from_auth_entry({"username": "bob", "password": "pw"})
        assert creds.username == "bob"
        assert creds.password == "pw"

    def test_identity_token(self):
        """Test identity and registry tokens."""
        creds = Credentials.from_auth_entry({"identitytoken": "refresh", "registrytoken": "bearer"})
        assert creds.identity_token == "refresh"
        assert creds.registry_token == "bearer"
        assert not creds.is_anonymous

    def test_bad_auth_field(self):
        """Test that an auth field without a colon is rejected."""
        with pytest.raises(ValueError):
            Credentials.from_auth_entry({"auth": base64.b64encode(b"nocolon").decode()})

    def test_anonymous(self):
        """Test the anonymous credential."""
        assert ANONYMOUS.is_anonymous
        assert ANONYMOUS.basic_auth() is None

    def test_basic_auth(self):
        """Test the Basic header value."""
        header = Credentials(username="u", password="p").basic_auth()
        assert header == "Basic " + base64.b64encode(b"u:p").decode()

    def test_repr_hides_secret(self):
        """Test that secrets never show up in repr."""
        assert "hunter2" not in repr(Credentials(username="u", password="hunter2"))


class TestMultiKeychain:
    """Tests for MultiKeychain."""

    def test_first_match_wins(self):
        """Test that earlier keychains take precedence."""
        first = FakeKeychain(Credentials(username="first", password="1"))
        second = FakeKeychain(Credentials(username="second", password="2"))
        chain = MultiKeychain(first, second)
        assert chain.resolve("gcr.io/project/app").username == "first"
        assert second.calls == []

    def test_skips_absent_sources(self):
        """Test that absent and anonymous results fall through."""
        chain = MultiKeychain(
            FakeKeychain(None),
            FakeKeychain(ANONYMOUS),
            FakeKeychain(Credentials(username="third", password="3")),
        )
        assert chain.resolve("quay.io").username == "third"

    def test_all_absent_is_anonymous(self):
        """Test that an exhausted chain resolves to anonymous rather than failing."""
        chain = MultiKeychain(FakeKeychain(None), FakeKeychain(None))
        assert chain.resolve("quay.io") is ANONYMOUS

    def test_empty_chain(self):
        """Test a chain without sources."""
        assert MultiKeychain().resolve("quay.io") is ANONYMOUS
        assert len(MultiKeychain()) == 0

    def test_registry_of(self):
        """Test extracting the registry from a resource."""
        assert registry_of("gcr.io/project/app") == "gcr.io"
        assert registry_of("quay.io") == "quay.io"
