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
Exception hierarchy shared by the whole package.
"""
from typing import List, Optional, Sequence


class WsoError(Exception):
    """Base class for every error raised by wso."""


class ManifestError(WsoError, ValueError):
    """The manifest is malformed or violates one of its invariants."""


class GenerationError(WsoError):
    """A configuration fragment could not be generated at all."""


class SecretStoreError(WsoError):
    """The secret store could not be read or written."""


class SecretNotFoundError(SecretStoreError):
    """
    A secret does not exist for a service.

    Carries the names of the secrets that do exist for that service, to help
    spot typos in manifests and crontab fragments.
    """
    def __init__(self, service: str, name: str, available: Optional[List[str]] = None):
        self.service = service
        self.name = name
        self.available = available or []
        super().__init__(f"Secret '{service}_{name}' not found")


class CommandError(WsoError):
    """An external command exited with a non-zero status or timed out."""
    def __init__(self, command: Sequence[str], returncode: Optional[int], stderr: str = ""):
        self.command = list(command)
        self.returncode = returncode
        self.stderr = stderr
        if returncode is None:
            message = f"Command timed out: {' '.join(self.command)}"
        else:
            message = f"Command failed ({returncode}): {' '.join(self.command)}"
        if stderr:
            message = f"{message}\n{stderr.strip()}"
        super().__init__(message)


class ProxyError(WsoError):
    """The reverse proxy rejected its configuration or could not be signalled."""


class StackError(WsoError):
    """The container orchestration platform refused an operation."""


class CertificateError(WsoError):
    """Certificate issuance or renewal failed."""


class ConfigUpdateError(WsoError):
    """The live configuration directory is not in a state that allows an update."""


class LockTimeoutError(WsoError):
    """A per-service lock could not be acquired in time."""


class DeploymentError(WsoError):
    """
    A deployment step failed. ``step`` names the step that failed.
    """
    def __init__(self, step, message: str):
        self.step = step
        super().__init__(f"Deployment failed at step '{step.value}': {message}")
