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
Unit tests for the Kubernetes pull secret keychain.
"""
import base64
import json

import pytest
from kubernetes.client import V1LocalObjectReference, V1ObjectMeta, V1Secret, V1ServiceAccount
from kubernetes.client.exceptions import ApiException

from imgpin.AUTHN.kube_keychain import NO_SERVICE_ACCOUNT, KubernetesKeychain, pull_secret_auths
from imgpin.errors import CredentialChainError
from imgpin.MODELS.resolver_config import KubeChainOptions


def dockerconfigjson_secret(name, auths):
    payload = base64.b64encode(json.dumps({"auths": auths}).encode()).decode()
    return V1Secret(
        metadata=V1ObjectMeta(name=name),
        type="kubernetes.io/dockerconfigjson",
        data={".dockerconfigjson": payload},
    )


class FakeCoreV1:
    """Serves secrets and service accounts from dictionaries."""

    def __init__(self, secrets=None, service_accounts=None, error=None):
        self.secrets = secrets or {}
        self.service_accounts = service_accounts or {}
        self.error = error
        self.calls = []

    def read_namespaced_secret(self, name, namespace, **kwargs):
        self.calls.append(("secret", namespace, name, kwargs))
        if self.error:
            raise self.error
        if (namespace, name) not in self.secrets:
            raise ApiException(status=404, reason="Not Found")
        return self.secrets[(namespace, name)]

    def read_namespaced_service_account(self, name, namespace, **kwargs):
        self.calls.append(("serviceaccount", namespace, name, kwargs))
        if self.error:
            raise self.error
        if (namespace, name) not in self.service_accounts:
            raise ApiException(status=404, reason="Not Found")
        return self.service_accounts[(namespace, name)]


class TestKubernetesKeychain:
    """Tests for KubernetesKeychain."""

    def test_explicit_pull_secret(self):
        """Test credentials from an explicitly named pull secret."""
        client = FakeCoreV1(secrets={
            ("apps", "regcred"): dockerconfigjson_secret("regcred", {"quay.io": {"username": "robot", "password": "p"}}),
        })
        options = KubeChainOptions(namespace="apps", image_pull_secrets=["regcred"])
        keychain = KubernetesKeychain.from_options(client, options, timeout=7)
        assert keychain.resolve("quay.io/org/app").username == "robot"
        assert keychain.resolve("gcr.io/project/app") is None
        assert client.calls[0] == ("secret", "apps", "regcred", {"_request_timeout": 7})

    def test_service_account_pull_secrets(self):
        """Test that secrets attached to the service account are used."""
        account = V1ServiceAccount(image_pull_secrets=[V1LocalObjectReference(name="sa-cred")])
        client = FakeCoreV1(
            secrets={("apps", "sa-cred"): dockerconfigjson_secret("sa-cred", {"gcr.io": {"username": "sa", "password": "p"}})},
            service_accounts={("apps", "builder"): account},
        )
        options = KubeChainOptions(namespace="apps", service_account_name="builder")
        keychain = KubernetesKeychain.from_options(client, options)
        assert keychain.resolve("gcr.io/project/app").username == "sa"

    def test_defaults_to_default_namespace_and_account(self):
        """Test the namespace and service account defaults."""
        client = FakeCoreV1()
        KubernetesKeychain.from_options(client, KubeChainOptions())
        assert client.calls == [("serviceaccount", "default", "default", {})]

    def test_no_service_account(self):
        """Test that the service account lookup can be switched off."""
        client = FakeCoreV1()
        KubernetesKeychain.from_options(client, KubeChainOptions(service_account_name=NO_SERVICE_ACCOUNT))
        assert client.calls == []

    def test_missing_objects_are_ignored(self):
        """Test that missing secrets and service accounts are skipped."""
        client = FakeCoreV1()
        options = KubeChainOptions(namespace="apps", service_account_name="ghost", image_pull_secrets=["gone"])
        keychain = KubernetesKeychain.from_options(client, options)
        assert keychain.resolve("quay.io/org/app") is None

    def test_api_failure_raises(self):
        """Test that other API failures abort keychain construction."""
        client = FakeCoreV1(error=ApiException(status=403, reason="Forbidden"))
        options = KubeChainOptions(namespace="apps", image_pull_secrets=["regcred"])
        with pytest.raises(CredentialChainError, match="Forbidden"):
            KubernetesKeychain.from_options(client, options)

    def test_connection_failure_raises(self):
        """Test that an unreachable cluster aborts keychain construction."""
        client = FakeCoreV1(error=ConnectionRefusedError("refused"))
        with pytest.raises(CredentialChainError):
            KubernetesKeychain.from_options(client, KubeChainOptions(service_account_name="builder"))

    @pytest.mark.parametrize("entry", [
        {"auth": "!!!notbase64"},
        {"auth": base64.b64encode(b"nocolon").decode()},
        "legacy-string",
    ])
    def test_malformed_auth_entry(self, entry):
        """Test that a pull secret with a bad auth entry is a credential error."""
        client = FakeCoreV1(secrets={("apps", "regcred"): dockerconfigjson_secret("regcred", {"quay.io": entry})})
        options = KubeChainOptions(namespace="apps", service_account_name=NO_SERVICE_ACCOUNT, image_pull_secrets=["regcred"])
        with pytest.raises(CredentialChainError, match="regcred"):
            KubernetesKeychain.from_options(client, options)


class TestPullSecretAuths:
    """Tests for pull secret decoding."""

    def test_legacy_dockercfg(self):
        """Test the kubernetes.io/dockercfg layout."""
        payload = base64.b64encode(json.dumps({"quay.io": {"auth": "dTpw"}}).encode()).decode()
        secret = V1Secret(metadata=V1ObjectMeta(name="old"), data={".dockercfg": payload})
        assert "quay.io" in pull_secret_auths(secret)

    def test_other_secret_types(self):
        """Test that unrelated secrets contribute nothing."""
        secret = V1Secret(metadata=V1ObjectMeta(name="tls"), data={"tls.crt": "eA=="})
        assert pull_secret_auths(secret) == {}

    def test_malformed_secret(self):
        """Test that undecodable pull secrets are reported."""
        secret = V1Secret(metadata=V1ObjectMeta(name="bad"), data={".dockerconfigjson": "bm90IGpzb24="})
        with pytest.raises(CredentialChainError, match="bad"):
            pull_secret_auths(secret)

    def test_auths_not_an_object(self):
        """Test that a non-object 'auths' section is reported."""
        payload = base64.b64encode(json.dumps({"auths": ["quay.io"]}).encode()).decode()
        secret = V1Secret(metadata=V1ObjectMeta(name="listy"), data={".dockerconfigjson": payload})
        with pytest.raises(CredentialChainError, match="listy"):
            pull_secret_auths(secret)
