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
Loader for the host-wide platform configuration (/etc/wso/wso.conf).
"""
import os
from typing import Dict, Optional
from dotenv import dotenv_values
from pydantic import ValidationError
from ..MODELS.platform_config import PlatformConfig
from ..errors import WsoError

DEFAULT_CONFIG_PATH = "/etc/wso/wso.conf"
ENV_PREFIX = "WSO_"


class ConfigParser:
    """
    Builds a PlatformConfig from the installer's KEY=VALUE file and WSO_* environment variables.

    The file uses the installer's keys (``MAIN_DOMAIN=example.com``) or the
    prefixed field names (``WSO_NGINX_CONF_DIR=/srv/nginx``). Environment
    variables take precedence over the file.
    """
    ALIASES = {
        "MAIN_DOMAIN": "platform_domain",
        "WSO_MAIN_DOMAIN": "platform_domain",
    }

    def __init__(self, environ: Optional[Dict[str, str]] = None):
        """
        :param environ: Environment used for overrides. Defaults to os.environ.
        """
        self.environ = environ if environ is not None else dict(os.environ)

    def parse(self, config_path: Optional[str] = DEFAULT_CONFIG_PATH) -> PlatformConfig:
        """
        Parses the configuration file, if it exists, and applies environment overrides.

        :param config_path: Path to the configuration file. A missing file is not an error.
        :return: The platform configuration.
        :raises WsoError: If a value fails validation.
        """
        values: Dict[str, str] = {}
        if config_path and os.path.exists(config_path):
            file_values = dotenv_values(config_path)
            values.update(self._to_fields(file_values))
        values.update(self._to_fields(self.environ))

        try:
            return PlatformConfig(**values)
        except ValidationError as e:
            raise WsoError(f"Invalid platform configuration:\n{e}") from e

    def _to_fields(self, raw: Dict[str, Optional[str]]) -> Dict[str, str]:
        """
        Maps KEY=VALUE pairs onto PlatformConfig field names, ignoring unknown keys.
        """
        fields = {}
        known = set(PlatformConfig.model_fields)
        for key, value in raw.items():
            if value is None:
                continue
            if key in self.ALIASES:
                fields[self.ALIASES[key]] = value
            elif key.startswith(ENV_PREFIX):
                name = key[len(ENV_PREFIX):].lower()
                if name in known:
                    fields[name] = value
        return fields
