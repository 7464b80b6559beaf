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
Reverse proxy capability: configuration syntax check and graceful reload.
"""
import logging
from abc import ABC, abstractmethod

from .command_runner import CommandRunner
from ..errors import CommandError, ProxyError

logger = logging.getLogger(__name__)


class ProxyController(ABC):
    """
    Narrow interface to the running reverse proxy.
    """

    @abstractmethod
    def validate_config(self) -> None:
        """Check the syntax of the whole live configuration. Raises ProxyError if invalid."""

    @abstractmethod
    def reload(self) -> None:
        """Reload the configuration without dropping connections. Raises ProxyError on failure."""


class DockerProxyController(ProxyController):
    """
    Drives the nginx process of the global nginx service through ``docker exec``.
    """

    def __init__(self, runner: CommandRunner, container_filter: str = "system_nginx", docker: str = "docker"):
        """
        :param runner: Executes the docker commands.
        :param container_filter: Name filter that matches the nginx task container.
        :param docker: Path or name of the docker binary.
        """
        self.runner = runner
        self.container_filter = container_filter
        self.docker = docker

    def container_id(self) -> str:
        """
        Finds the running nginx container.

        :return: The first matching container ID.
        :raises ProxyError: If no container matches.
        """
        try:
            output = self.runner.run([self.docker, "ps", "-q", "-f", f"name={self.container_filter}"])
        except CommandError as e:
            raise ProxyError(f"Cannot list containers: {e}") from e
        ids = output.split()
        if not ids:
            raise ProxyError(
                f"Nginx container '{self.container_filter}' not found. Is the system stack running?"
            )
        return ids[0]

    def validate_config(self) -> None:
        container = self.container_id()
        logger.info("Testing nginx configuration syntax...")
        try:
            self.runner.run([self.docker, "exec", container, "nginx", "-t"])
        except CommandError as e:
            raise ProxyError(f"Nginx configuration syntax test failed: {e.stderr.strip() or e}") from e

    def reload(self) -> None:
        container = self.container_id()
        logger.info("Reloading nginx...")
        try:
            self.runner.run([self.docker, "exec", container, "nginx", "-s", "reload"])
        except CommandError as e:
            raise ProxyError(f"Failed to reload nginx: {e}") from e
