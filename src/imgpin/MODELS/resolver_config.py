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
Configuration models for digest resolution.

A ResolverConfig is built once at process start (from the environment, a
.env file, a YAML file or CLI flags) and passed explicitly to everything that
needs it. It is frozen after construction.
"""
import os
from pathlib import Path
from typing import Annotated, Any, Dict, List, Mapping, Optional, Union

import yaml
from dotenv import dotenv_values
from pydantic import BaseModel, BeforeValidator, ConfigDict, Field, field_validator

SERVICE_ACCOUNT_NAMESPACE_FILE = Path("/var/run/secrets/kubernetes.io/serviceaccount/namespace")
DEFAULT_NAMESPACE = "default"
DEFAULT_TIMEOUT = 30.0

_TRUE_VALUES = {"1", "true", "yes", "on"}


def _split_list(value: Any) -> Any:
    if value is None:
        return []
    if isinstance(value, str):
        return [item.strip() for item in value.split(",") if item.strip()]
    if isinstance(value, (list, tuple, set, frozenset)):
        items: List[str] = []
        for item in value:
            items.extend(_split_list(item) if isinstance(item, str) else [item])
        return items
    return value


# Accepts a list or a comma separated string
NameList = Annotated[List[str], BeforeValidator(_split_list)]


def pod_namespace(environ: Mapping[str, str]) -> str:
    """Namespace of the current pod, or 'default' outside a cluster."""
    namespace = environ.get("POD_NAMESPACE", "").strip()
    if namespace:
        return namespace
    try:
        namespace = SERVICE_ACCOUNT_NAMESPACE_FILE.read_text().strip()
    except OSError:
        namespace = ""
    return namespace or DEFAULT_NAMESPACE


class KubeChainOptions(BaseModel):
    """
    Where to look for image pull secrets inside a cluster.
    """

    model_config = ConfigDict(frozen=True)

    namespace: str = ""
    service_account_name: str = ""
    image_pull_secrets: NameList = []

    def is_set(self) -> bool:
        """Whether these options ask for any cluster-scoped credentials at all."""
        return bool(self.service_account_name) or len(self.image_pull_secrets) > 0


class ResolverConfig(BaseModel):
    """
    The externally tunable knobs of digest resolution.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    insecure_registries: NameList = []
    image_pull_secrets: NameList = []
    namespace: str = DEFAULT_NAMESPACE
    service_account_name: str = ""
    skip_digest_resolution: bool = False
    timeout: float = Field(default=DEFAULT_TIMEOUT, gt=0)

    @field_validator("skip_digest_resolution", mode="before")
    @classmethod
    def parse_flag(cls, value: Any) -> Any:
        if isinstance(value, str):
            return value.strip().lower() in _TRUE_VALUES
        return value

    @classmethod
    def from_env(
        cls,
        environ: Optional[Mapping[str, str]] = None,
        env_file: Optional[Union[str, Path]] = None,
    ) -> "ResolverConfig":
        """
        Build a config from environment variables.

        :param environ: Variables to read. Defaults to os.environ.
        :param env_file: Optional .env file. Its values never override variables
            that are already set.
        """
        values: Dict[str, str] = {}
        if env_file:
            values.update({k: v for k, v in dotenv_values(env_file).items() if v is not None})
        values.update(os.environ if environ is None else environ)

        data: Dict[str, Any] = {
            "insecure_registries": values.get("IMGPIN_INSECURE_REGISTRIES"),
            "image_pull_secrets": values.get("IMGPIN_IMAGE_PULL_SECRETS"),
            "namespace": pod_namespace(values),
            "service_account_name": values.get("POD_SERVICE_ACCOUNT", ""),
            "skip_digest_resolution": values.get("SKIP_IMAGE_DIGEST", ""),
        }
        if values.get("IMGPIN_TIMEOUT"):
            data["timeout"] = values["IMGPIN_TIMEOUT"]
        return cls(**data)

    @classmethod
    def from_yaml(cls, path: Union[str, Path]) -> "ResolverConfig":
        """
        Load a config from a YAML file.

        Keys may be written in kebab-case ('insecure-registries') or snake_case.
        """
        with open(path, "r") as f:
            try:
                data = yaml.safe_load(f) or {}
            except yaml.YAMLError as e:
                raise ValueError(f"{path}: {e}") from e
        if not isinstance(data, dict):
            raise ValueError(f"{path}: expected a mapping at the top level")
        return cls(**{str(k).replace("-", "_"): v for k, v in data.items()})

    def merged(self, **overrides: Any) -> "ResolverConfig":
        """A copy with every override that is not None applied."""
        data = self.model_dump()
        data.update({k: v for k, v in overrides.items() if v is not None})
        return type(self)(**data)

    def flag_options(self) -> KubeChainOptions:
        """Cluster credential options derived from this config."""
        return KubeChainOptions(
            namespace=self.namespace,
            service_account_name=self.service_account_name,
            image_pull_secrets=self.image_pull_secrets,
        )
