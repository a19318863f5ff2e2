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
Integration tests for the echo-image-digest command.
"""
import subprocess
from unittest import mock

import pytest
from click.testing import CliRunner

from imgpin.CLI.main import cli
from imgpin.errors import CredentialChainError, DigestQueryError

DIGEST = "sha256:d586384381a0e6834cef73d432b1486f0b86334cb92e54256def62dd403f82ab"

CLEAN_ENV = {
    "POD_NAMESPACE": "default",
    "POD_SERVICE_ACCOUNT": None,
    "IMGPIN_IMAGE_PULL_SECRETS": None,
    "IMGPIN_INSECURE_REGISTRIES": None,
    "SKIP_IMAGE_DIGEST": None,
    "IMGPIN_TIMEOUT": None,
}


@pytest.fixture
def runner():
    return CliRunner()


def test_cli_help(runner):
    result = runner.invoke(cli, ['--help'])
    assert result.exit_code == 0
    assert 'digest-pinned' in result.output
    assert '--insecure-registries' in result.output


def test_cli_requires_image(runner):
    result = runner.invoke(cli, [], env=CLEAN_ENV)
    assert result.exit_code != 0
    assert '--image' in result.output


def test_cli_prints_pinned_image(runner):
    with mock.patch("imgpin.REGISTRY.registry_client.RegistryClient.digest", return_value=DIGEST) as digest:
        result = runner.invoke(cli, ['--image', 'nginx:1.0.1'], env=CLEAN_ENV)
    assert result.exit_code == 0
    assert result.output.strip() == f"nginx:1.0.1@{DIGEST}"
    assert digest.call_args.kwargs["insecure"] is False


def test_cli_insecure_registries(runner):
    with mock.patch("imgpin.REGISTRY.registry_client.RegistryClient.digest", return_value=DIGEST) as digest:
        result = runner.invoke(
            cli, ['--image', 'gcr.io/project/app:1', '--insecure-registries', 'gcr.io'], env=CLEAN_ENV
        )
    assert result.exit_code == 0
    assert digest.call_args.kwargs["insecure"] is True


def test_cli_skip_digest_resolution(runner):
    with mock.patch("imgpin.REGISTRY.registry_client.RegistryClient.digest") as digest:
        result = runner.invoke(
            cli, ['--image', f'nginx:1.0.1@{DIGEST}', '--skip-digest-resolution'], env=CLEAN_ENV
        )
    assert result.exit_code == 0
    assert result.output.strip() == "nginx:1.0.1"
    digest.assert_not_called()


def test_cli_invalid_reference(runner):
    result = runner.invoke(cli, ['--image', f'@{DIGEST}'], env=CLEAN_ENV)
    assert result.exit_code == 2
    assert 'Error:' in result.output


def test_cli_digest_error(runner):
    error = DigestQueryError("registry returned 404 for quay.io/org/app:1", "quay.io/org/app:1", 404)
    with mock.patch("imgpin.REGISTRY.registry_client.RegistryClient.digest", side_effect=error):
        result = runner.invoke(cli, ['--image', 'quay.io/org/app:1'], env=CLEAN_ENV)
    assert result.exit_code == 4
    assert 'registry returned 404' in result.output


def test_cli_cluster_options_load_client(runner):
    with mock.patch("imgpin.CLI.main.load_kube_client", side_effect=CredentialChainError("no cluster")) as load:
        result = runner.invoke(
            cli, ['--image', 'nginx', '--image-pull-secrets', 'regcred', '--kubeconfig', 'kube.yaml'], env=CLEAN_ENV
        )
    assert result.exit_code == 3
    load.assert_called_once_with('kube.yaml')


def test_cli_config_file(runner, tmp_path):
    config = tmp_path / "imgpin.yaml"
    config.write_text("skip-digest-resolution: true\n")
    result = runner.invoke(cli, ['--image', 'nginx:1.0.1', '--config', str(config)], env=CLEAN_ENV)
    assert result.exit_code == 0
    assert result.output.strip() == "nginx:1.0.1"


def test_cli_bad_config_file(runner, tmp_path):
    config = tmp_path / "imgpin.yaml"
    config.write_text("no-such-option: 1\n")
    result = runner.invoke(cli, ['--image', 'nginx', '--config', str(config)], env=CLEAN_ENV)
    assert result.exit_code == 1
    assert 'invalid configuration' in result.output


def test_cli_credential_error(runner):
    error = CredentialChainError("pull secret regcred is malformed: missing ':'")
    with mock.patch("imgpin.RESOLVER.digest_resolver.build_keychain", side_effect=error):
        result = runner.invoke(cli, ['--image', 'quay.io/org/app:1'], env=CLEAN_ENV)
    assert result.exit_code == 3
    assert 'Error: pull secret regcred is malformed' in result.output


def test_cli_helper_timeout(runner):
    error = subprocess.TimeoutExpired(cmd="docker-credential-ecr-login", timeout=30)
    with mock.patch("imgpin.AUTHN.helpers.subprocess.run", side_effect=error):
        result = runner.invoke(
            cli, ['--image', '123456789012.dkr.ecr.us-east-1.amazonaws.com/app:1'],
            env=dict(CLEAN_ENV, HOME='/nonexistent', DOCKER_CONFIG='/nonexistent', REGISTRY_AUTH_FILE=None,
                     XDG_RUNTIME_DIR=None),
        )
    assert result.exit_code == 3
    assert 'credential helper timed out' in result.output
