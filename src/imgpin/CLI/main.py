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
Command Line Interface for imgpin.
"""
import logging
import subprocess
import sys

import click
from pydantic import ValidationError

from ..AUTHN.chain import load_kube_client
from ..errors import CredentialChainError, DigestQueryError, InvalidReferenceError
from ..MODELS.resolver_config import KubeChainOptions, ResolverConfig
from ..RESOLVER.digest_resolver import DigestResolver

EXIT_CONFIG_ERROR = 1
EXIT_INVALID_REFERENCE = 2
EXIT_CREDENTIAL_ERROR = 3
EXIT_DIGEST_ERROR = 4

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def _fail(message: str, code: int) -> None:
    click.echo(f"Error: {message}", err=True)
    sys.exit(code)


@click.command()
@click.option('--image', required=True, help='Image name')
@click.option('--namespace', default=None, help='Pod namespace')
@click.option('--service-account-name', default=None, help='Pod service account name')
@click.option('--image-pull-secrets', multiple=True, help='Name of image pull secret (repeatable or comma separated)')
@click.option('--insecure-registries', multiple=True, help='Registries to be used without TLS verification')
@click.option('--skip-digest-resolution', is_flag=True, help='Print the image without looking up its digest')
@click.option('--kubeconfig', type=click.Path(dir_okay=False), default=None, help='Path to a kubeconfig file')
@click.option('--config', 'config_file', type=click.Path(exists=True, dir_okay=False), default=None,
              help='YAML configuration file')
@click.option('--env-file', type=click.Path(exists=True, dir_okay=False), default=None,
              help='.env file with configuration variables')
@click.option('--timeout', type=float, default=None, help='Seconds to wait on each registry or cluster call')
@click.option('--log-level', envvar='IMGPIN_LOG_LEVEL', default='WARNING',
              type=click.Choice(['DEBUG', 'INFO', 'WARNING', 'ERROR'], case_sensitive=False))
def cli(image, namespace, service_account_name, image_pull_secrets, insecure_registries,
        skip_digest_resolution, kubeconfig, config_file, env_file, timeout, log_level):
    """
    Print the digest-pinned form of a docker image.
    """
    logging.basicConfig(level=log_level.upper(), format=LOG_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")

    try:
        if config_file:
            config = ResolverConfig.from_yaml(config_file)
        else:
            config = ResolverConfig.from_env(env_file=env_file)
        config = config.merged(
            insecure_registries=list(insecure_registries) or None,
            skip_digest_resolution=True if skip_digest_resolution else None,
            timeout=timeout,
        )
    except (ValidationError, ValueError, OSError) as e:
        _fail(f"invalid configuration: {e}", EXIT_CONFIG_ERROR)

    explicit = None
    if namespace or service_account_name or image_pull_secrets:
        explicit = KubeChainOptions(
            namespace=namespace or config.namespace,
            service_account_name=service_account_name or "",
            image_pull_secrets=list(image_pull_secrets),
        )

    try:
        kube_client = None
        needs_cluster = (explicit is not None and explicit.is_set()) or config.flag_options().is_set()
        if needs_cluster and not config.skip_digest_resolution:
            kube_client = load_kube_client(kubeconfig)
        result = DigestResolver(config).resolve(image, kube_client, explicit)
    except InvalidReferenceError as e:
        _fail(str(e), EXIT_INVALID_REFERENCE)
    except CredentialChainError as e:
        _fail(str(e), EXIT_CREDENTIAL_ERROR)
    except subprocess.TimeoutExpired as e:
        _fail(f"credential helper timed out: {e}", EXIT_CREDENTIAL_ERROR)
    except DigestQueryError as e:
        _fail(str(e), EXIT_DIGEST_ERROR)

    click.echo(result)


def main():
    """
    Main entry point for the CLI.
    """
    cli()


if __name__ == '__main__':
    main()
