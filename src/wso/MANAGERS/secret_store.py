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
Namespaced, root-readable-only secrets stored as one file per secret.
"""
import logging
import os
import re
from pathlib import Path
from typing import Dict, List, Optional, Union

from ..MODELS.manifest import SecretSource
from ..UTILS.file_ops import atomic_write
from ..errors import ManifestError, SecretNotFoundError, SecretStoreError

logger = logging.getLogger(__name__)

KEY_PART_RE = re.compile(r'^[A-Za-z0-9_-]+$')


class SecretStore:
    """
    Stores secret ``name`` of ``service`` in ``{secrets_dir}/{service}_{name}``.

    The directory is 0700 and every file 0400, so only the owning (privileged)
    identity can read them. Writes are atomic.
    """

    def __init__(self, secrets_dir: Union[str, Path]):
        """
        :param secrets_dir: Directory holding the secret files.
        """
        self.secrets_dir = Path(secrets_dir)

    def path_for(self, service: str, name: str) -> Path:
        """
        Physical location of a secret.

        :raises SecretStoreError: If either part is not a plain identifier.
        """
        for label, part in (("service", service), ("secret name", name)):
            if not part or not KEY_PART_RE.match(part):
                raise SecretStoreError(f"Invalid {label} '{part}'")
        return self.secrets_dir / f"{service}_{name}"

    def put(self, service: str, name: str, value: Union[str, bytes]) -> Path:
        """
        Creates or replaces a secret.

        :return: Path of the secret file.
        """
        path = self.path_for(service, name)
        try:
            self.secrets_dir.mkdir(mode=0o700, parents=True, exist_ok=True)
            os.chmod(self.secrets_dir, 0o700)
            atomic_write(path, value, mode=0o400)
        except OSError as e:
            raise SecretStoreError(f"Cannot write secret '{service}_{name}': {e}") from e
        logger.info("Stored secret %s_%s", service, name)
        return path

    def read(self, service: str, name: str) -> bytes:
        """
        Raw content of a secret.

        :raises SecretNotFoundError: If the secret does not exist.
        """
        path = self.path_for(service, name)
        try:
            return path.read_bytes()
        except FileNotFoundError:
            raise SecretNotFoundError(service, name, self.list(service)) from None
        except OSError as e:
            raise SecretStoreError(f"Cannot read secret '{service}_{name}': {e}") from e

    def get(self, service: str, name: str) -> str:
        """
        Content of a secret as text.

        :raises SecretNotFoundError: If the secret does not exist.
        """
        return self.read(service, name).decode('utf-8')

    def exists(self, service: str, name: str) -> bool:
        return self.path_for(service, name).is_file()

    def list(self, service: str) -> List[str]:
        """
        Names of the secrets stored for a service, sorted.
        """
        prefix = f"{service}_"
        try:
            entries = os.listdir(self.secrets_dir)
        except FileNotFoundError:
            return []
        except OSError as e:
            raise SecretStoreError(f"Cannot list secrets in {self.secrets_dir}: {e}") from e
        return sorted(
            entry[len(prefix):] for entry in entries
            if entry.startswith(prefix) and len(entry) > len(prefix)
        )

    def delete(self, service: str, name: str) -> None:
        path = self.path_for(service, name)
        try:
            path.unlink()
        except FileNotFoundError:
            raise SecretNotFoundError(service, name, self.list(service)) from None
        logger.info("Deleted secret %s_%s", service, name)


def resolve_secret_value(name: str,
                         source: Union[str, SecretSource],
                         environ: Optional[Dict[str, str]] = None,
                         base_dir: Optional[str] = None) -> str:
    """
    Turns a manifest secret entry into its value.

    Literal strings are returned as they are; ``{env: NAME}`` reads the
    deploying process environment and ``{file: PATH}`` reads a file relative
    to the manifest directory.

    :raises ManifestError: If the reference cannot be resolved.
    """
    if isinstance(source, str):
        return source
    if source.value is not None:
        return source.value
    if source.env is not None:
        environ = environ if environ is not None else dict(os.environ)
        if source.env not in environ:
            raise ManifestError(f"Secret '{name}': environment variable {source.env} is not set")
        return environ[source.env]
    if source.file is not None:
        path = os.path.join(base_dir or os.getcwd(), os.path.expanduser(source.file))
        try:
            with open(path, 'r') as f:
                return f.read()
        except OSError as e:
            raise ManifestError(f"Secret '{name}': cannot read {path}: {e}") from e
    raise ManifestError(f"Secret '{name}' has no value")
