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
Parsers for service manifest YAML files.
"""
import logging
import os
import re
import yaml
from typing import Dict, Any, List, Optional
from pydantic import ValidationError
from ..MODELS.manifest import Manifest, SecretSource
from ..UTILS.string_interpolation import EnvironmentInterpolator
from ..errors import ManifestError

logger = logging.getLogger(__name__)

NAME_RE = re.compile(r'^[A-Za-z0-9_-]+$')


class ManifestParser:
    """
    Parser for service manifest files.
    """
    def __init__(self, context: Optional[Dict[str, str]] = None):
        """
        Initializes the parser with an optional environment context for interpolation.

        :param context: A dictionary of environment variables for interpolation.
        """
        self.context = context if context is not None else dict(os.environ)

    def parse(self, manifest_path: str) -> Manifest:
        """
        Parses a manifest from a path.

        :param manifest_path: Path to the manifest file.
        :return: Parsed manifest.
        """
        try:
            with open(manifest_path, 'r') as f:
                content = f.read()
        except OSError as e:
            raise ManifestError(f"Cannot read manifest {manifest_path}: {e}") from e
        return self.parse_from_string(content, base_dir=os.path.dirname(os.path.abspath(manifest_path)))

    def parse_from_string(self, content: str, base_dir: Optional[str] = None) -> Manifest:
        """
        Parses a manifest from a string.

        :param content: YAML content of the manifest.
        :param base_dir: Directory used to resolve relative secret files.
        :return: Parsed manifest.
        :raises ManifestError: If the document is invalid.
        """
        try:
            content = EnvironmentInterpolator.interpolate(content, self.context)
        except KeyError as e:
            raise ManifestError(f"Interpolation failed: {e.args[0]}") from e

        try:
            data = yaml.safe_load(content)
        except yaml.YAMLError as e:
            raise ManifestError(f"Invalid YAML: {e}") from e

        if not isinstance(data, dict):
            raise ManifestError("Manifest must be a mapping")

        try:
            manifest = Manifest(**self._normalize(data), base_dir=base_dir)
        except ValidationError as e:
            raise ManifestError(f"Invalid manifest:\n{e}") from e

        self._validate(manifest)
        return manifest

    def _normalize(self, data: Dict[str, Any]) -> Dict[str, Any]:
        """
        Replaces explicit YAML nulls of collection fields with empty collections
        and non-mapping domain or cron job items with empty entries, which the
        converters skip.

        :param data: Raw manifest mapping.
        :return: A copy suitable for the Manifest model.
        """
        data = dict(data)
        data.pop('base_dir', None)
        for key, empty in (('domains', []), ('cron_jobs', []), ('secrets', {}), ('stack', {})):
            if data.get(key) is None:
                data[key] = empty
        for key in ('domains', 'cron_jobs'):
            if isinstance(data[key], list):
                data[key] = [self._entry(key, index, item) for index, item in enumerate(data[key])]
        jobs = []
        for job in data['cron_jobs']:
            if isinstance(job, dict) and job.get('secrets') is None:
                job = dict(job, secrets={})
            jobs.append(job)
        data['cron_jobs'] = jobs
        if isinstance(data['secrets'], dict):
            # YAML turns bare numbers and booleans into non-strings
            data['secrets'] = {
                str(k): (str(v) if isinstance(v, (int, float, bool)) else v)
                for k, v in data['secrets'].items()
            }
        return data

    @staticmethod
    def _entry(key: str, index: int, item: Any) -> Dict[str, Any]:
        if isinstance(item, dict):
            return item
        logger.warning("%s[%d] is not a mapping, skipping", key, index)
        return {}

    def _validate(self, manifest: Manifest):
        """
        Checks the cross-field invariants of a manifest.

        :param manifest: The manifest to check.
        :raises ManifestError: On the first violation found.
        """
        services = manifest.stack.get('services')
        if not isinstance(services, dict) or not services:
            raise ManifestError("'stack.services' must be a non-empty mapping")

        declared = set(services.keys())
        for referenced in self._referenced_containers(manifest):
            if referenced not in declared:
                raise ManifestError(
                    f"Container '{referenced}' is not a service of the stack "
                    f"(declared: {', '.join(sorted(declared))})"
                )

        default = manifest.default_domain
        if not (default and default.container_name) and not (
                manifest.domains and _is_name(manifest.domains[0].container_name)):
            raise ManifestError(
                "Either 'default_domain.container_name' or 'domains[0].container_name' must be specified"
            )

        for name, source in manifest.secrets.items():
            if not NAME_RE.match(name):
                raise ManifestError(f"Invalid secret name '{name}'")
            if isinstance(source, SecretSource):
                set_fields = [f for f in ('value', 'env', 'file') if getattr(source, f) is not None]
                if len(set_fields) != 1:
                    raise ManifestError(
                        f"Secret '{name}' must set exactly one of 'value', 'env' or 'file'"
                    )

    def _referenced_containers(self, manifest: Manifest) -> List[str]:
        """
        Helper listing every container name the manifest routes traffic to.

        :param manifest: The manifest.
        :return: Container names in declaration order.
        """
        names = [d.container_name for d in manifest.domains if _is_name(d.container_name)]
        if manifest.default_domain and manifest.default_domain.container_name:
            names.append(manifest.default_domain.container_name)
        return names


def _is_name(value: Any) -> bool:
    return isinstance(value, str) and bool(value)
