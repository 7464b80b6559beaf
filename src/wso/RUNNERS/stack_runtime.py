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
Container orchestration capability: image pulls, payload extraction and Swarm stacks.
"""
import logging
import uuid
from abc import ABC, abstractmethod
from typing import Any, Dict, List

import yaml
from tenacity import Retrying, retry_if_exception_type, retry_if_result, stop_after_delay, wait_fixed

from .command_runner import CommandRunner
from ..errors import CommandError, StackError

logger = logging.getLogger(__name__)


class StackRuntime(ABC):
    """
    Narrow interface to the container orchestration platform.
    """

    @abstractmethod
    def pull_image(self, image: str) -> None:
        """Pull ``image`` from its registry."""

    @abstractmethod
    def extract_file(self, image: str, source_path: str, dest_path: str) -> None:
        """Copy ``source_path`` out of ``image`` into ``dest_path`` on the host."""

    @abstractmethod
    def stack_exists(self, name: str) -> bool:
        """Whether a stack called ``name`` is deployed."""

    @abstractmethod
    def deploy(self, name: str, payload: Dict[str, Any]) -> None:
        """Create or update the stack ``name`` from a compose payload."""

    @abstractmethod
    def wait_for_stack(self, name: str, timeout: float) -> bool:
        """Wait until every service of the stack is scheduled. Returns False on timeout."""


class DockerStackRuntime(StackRuntime):
    """
    StackRuntime backed by the docker CLI in Swarm mode.
    """

    def __init__(self, runner: CommandRunner, docker: str = "docker", ready_interval: float = 2.0):
        """
        Args:
            runner: Executes the docker commands.
            docker: Path or name of the docker binary.
            ready_interval: Seconds between two readiness probes in wait_for_stack.
        """
        self.runner = runner
        self.docker = docker
        self.ready_interval = ready_interval

    def pull_image(self, image: str) -> None:
        logger.info("Pulling image %s", image)
        try:
            self.runner.run([self.docker, "pull", image])
        except CommandError as e:
            raise StackError(f"Failed to pull image {image}: {e}") from e

    def extract_file(self, image: str, source_path: str, dest_path: str) -> None:
        container = f"wso-extract-{uuid.uuid4().hex[:12]}"
        logger.info("Extracting %s from %s", source_path, image)
        try:
            self.runner.run([self.docker, "create", "--name", container, image])
        except CommandError as e:
            raise StackError(f"Failed to create temporary container from {image}: {e}") from e
        try:
            self.runner.run([self.docker, "cp", f"{container}:{source_path}", dest_path])
        except CommandError as e:
            raise StackError(f"File {source_path} not found in image {image}") from e
        finally:
            try:
                self.runner.run([self.docker, "rm", "-f", container])
            except CommandError as e:
                logger.warning("Could not remove temporary container %s: %s", container, e)

    def stack_exists(self, name: str) -> bool:
        try:
            output = self.runner.run([self.docker, "stack", "ls", "--format", "{{.Name}}"])
        except CommandError as e:
            raise StackError(f"Failed to list stacks: {e}") from e
        return name in output.split()

    def deploy(self, name: str, payload: Dict[str, Any]) -> None:
        compose = yaml.safe_dump(payload, default_flow_style=False, sort_keys=False)
        logger.info("Deploying stack %s", name)
        try:
            self.runner.run(
                [self.docker, "stack", "deploy", "--with-registry-auth", "--compose-file", "-", name],
                input=compose,
            )
        except CommandError as e:
            raise StackError(f"Failed to deploy stack {name}: {e}") from e

    def wait_for_stack(self, name: str, timeout: float) -> bool:
        logger.info("Waiting up to %ss for stack %s", timeout, name)
        retryer = Retrying(
            stop=stop_after_delay(timeout),
            wait=wait_fixed(self.ready_interval),
            retry=retry_if_result(lambda ready: not ready) | retry_if_exception_type(CommandError),
            retry_error_callback=lambda retry_state: False,
        )
        return retryer(self._stack_ready, name)

    def _stack_ready(self, name: str) -> bool:
        output = self.runner.run(
            [self.docker, "stack", "services", "--format", "{{.Replicas}}", name]
        )
        return replicas_ready(output.splitlines())


def replicas_ready(lines: List[str]) -> bool:
    """
    True when every ``running/desired`` line reports all replicas running.

    Lines look like ``1/1`` or ``2/3 (max 1 per node)``.
    """
    lines = [line.strip() for line in lines if line.strip()]
    if not lines:
        return False
    for line in lines:
        running, _, desired = line.split()[0].partition('/')
        try:
            if int(running) < int(desired):
                return False
        except ValueError:
            return False
    return True
