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
Manifest-driven deployment of one service: secrets, nginx fragment, Swarm stack and crontab.
"""
import logging
import os
import tempfile
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, List, Optional

from ..CONVERTERS.to_crontab import CrontabConverter
from ..CONVERTERS.to_nginx import NginxConfigConverter
from ..MODELS.manifest import Manifest
from ..MODELS.platform_config import PlatformConfig
from ..PARSERS.manifest_parser import ManifestParser
from ..RUNNERS.command_runner import CommandRunner
from ..RUNNERS.proxy_controller import DockerProxyController, ProxyController
from ..RUNNERS.stack_runtime import DockerStackRuntime, StackRuntime
from ..errors import DeploymentError, WsoError
from .config_updater import SafeConfigUpdater, UpdateState
from .crontab_manager import CrontabManager
from .secret_store import SecretStore, resolve_secret_value

logger = logging.getLogger(__name__)


class DeployMode(str, Enum):
    """Whether the stack is deployed for the first time or updated."""

    CREATE = "create"
    UPDATE = "update"


class DeployStep(str, Enum):
    PULL_IMAGE = "pull_image"
    EXTRACT_MANIFEST = "extract_manifest"
    PARSE_MANIFEST = "parse_manifest"
    CHECK_STACK = "check_stack"
    PROVISION_SECRETS = "provision_secrets"
    GENERATE = "generate"
    UPDATE_NGINX = "update_nginx"
    APPLY_STACK = "apply_stack"
    WAIT_FOR_STACK = "wait_for_stack"
    INSTALL_CRONTAB = "install_crontab"


def plan_steps(mode: DeployMode) -> List[DeployStep]:
    """
    Orders the deployment steps for a mode.

    Both fragments are rendered before anything on the host is touched, so a
    manifest that cannot be rendered leaves secrets, proxy and stack as they were.
    An existing stack gets its nginx fragment first so the proxy can route to
    the new containers as soon as they start. A new stack is applied first
    because the proxy check needs its upstreams to resolve.
    """
    steps = [DeployStep.GENERATE, DeployStep.PROVISION_SECRETS]
    if mode == DeployMode.UPDATE:
        steps += [DeployStep.UPDATE_NGINX, DeployStep.APPLY_STACK]
    else:
        steps += [DeployStep.APPLY_STACK, DeployStep.WAIT_FOR_STACK, DeployStep.UPDATE_NGINX]
    steps.append(DeployStep.INSTALL_CRONTAB)
    return steps


@dataclass
class DeploymentReport:
    """Outcome of a successful deployment."""
    service_name: str
    mode: DeployMode
    steps: List[DeployStep] = field(default_factory=list)
    nginx_state: Optional[UpdateState] = None
    crontab_changed: bool = False
    stack_ready: Optional[bool] = None


class _Run:
    """State carried between the steps of one deployment."""

    def __init__(self, manifest: Manifest, report: DeploymentReport):
        self.manifest = manifest
        self.report = report
        self.nginx_config: Optional[str] = None
        self.crontab: Optional[str] = None


class StackDeployer:
    """
    Deploys a service from its manifest.

    Any failing step aborts the deployment with a DeploymentError naming the
    step. Steps already executed are not undone; the nginx step itself always
    leaves a valid configuration behind.
    """

    def __init__(self,
                 config: PlatformConfig,
                 runtime: StackRuntime,
                 proxy: ProxyController,
                 secret_store: Optional[SecretStore] = None,
                 config_updater: Optional[SafeConfigUpdater] = None,
                 crontab_manager: Optional[CrontabManager] = None,
                 environ: Optional[Dict[str, str]] = None):
        """
        :param config: The platform configuration.
        :param runtime: The container orchestration platform.
        :param proxy: The reverse proxy.
        :param secret_store: Defaults to a store in ``config.secrets_dir``.
        :param config_updater: Defaults to an updater on ``config.nginx_conf_dir``.
        :param crontab_manager: Defaults to a manager on ``config.crontab_dir``.
        :param environ: Environment used to interpolate manifests and resolve secrets.
        """
        self.config = config
        self.runtime = runtime
        self.proxy = proxy
        self.secret_store = secret_store or SecretStore(config.secrets_dir)
        self.config_updater = config_updater or SafeConfigUpdater(
            config.nginx_conf_dir, proxy, lock_dir=config.lock_dir, lock_timeout=config.lock_timeout
        )
        self.crontab_manager = crontab_manager or CrontabManager(config.crontab_dir)
        self.environ = environ if environ is not None else dict(os.environ)
        self.nginx_converter = NginxConfigConverter(config)
        self.crontab_converter = CrontabConverter(config, secret_store=self.secret_store)

        self._handlers: Dict[DeployStep, Callable[[_Run], None]] = {
            DeployStep.GENERATE: self._generate,
            DeployStep.PROVISION_SECRETS: self._provision_secrets,
            DeployStep.UPDATE_NGINX: self._update_nginx,
            DeployStep.APPLY_STACK: self._apply_stack,
            DeployStep.WAIT_FOR_STACK: self._wait_for_stack,
            DeployStep.INSTALL_CRONTAB: self._install_crontab,
        }

    @classmethod
    def from_config(cls, config: PlatformConfig) -> "StackDeployer":
        """
        Builds a deployer driving the local docker CLI.
        """
        runner = CommandRunner(timeout=config.command_timeout)
        runtime = DockerStackRuntime(runner, ready_interval=config.stack_ready_interval)
        proxy = DockerProxyController(runner, container_filter=config.nginx_container)
        return cls(config, runtime, proxy)

    def deploy_image(self, image: str, manifest_path: str) -> DeploymentReport:
        """
        Pulls ``image``, extracts the manifest stored at ``manifest_path`` inside it and deploys it.
        """
        logger.info("Deploying from image %s (manifest %s)", image, manifest_path)
        self._step(DeployStep.PULL_IMAGE, self.runtime.pull_image, image)
        with tempfile.TemporaryDirectory(prefix="wso-") as tmp:
            local_path = os.path.join(tmp, "manifest.yml")
            self._step(DeployStep.EXTRACT_MANIFEST, self.runtime.extract_file, image, manifest_path, local_path)
            parser = ManifestParser(self.environ)
            manifest = self._step(DeployStep.PARSE_MANIFEST, parser.parse, local_path)
        return self.deploy(manifest)

    def deploy(self, manifest: Manifest) -> DeploymentReport:
        """
        Deploys a parsed manifest, choosing the mode from the current stack state.
        """
        exists = self._step(DeployStep.CHECK_STACK, self.runtime.stack_exists, manifest.service_name)
        mode = DeployMode.UPDATE if exists else DeployMode.CREATE
        return self.execute(manifest, mode)

    def execute(self, manifest: Manifest, mode: DeployMode) -> DeploymentReport:
        """
        Runs the steps planned for ``mode``.

        :raises DeploymentError: On the first failing step.
        """
        logger.info("Deploying %s (%s)", manifest.service_name, mode.value)
        report = DeploymentReport(service_name=manifest.service_name, mode=mode)
        run = _Run(manifest, report)
        for step in plan_steps(mode):
            self._step(step, self._handlers[step], run)
            report.steps.append(step)
        logger.info("Deployment of %s completed", manifest.service_name)
        return report

    def _step(self, step: DeployStep, func, *args):
        logger.debug("Step %s", step.value)
        try:
            return func(*args)
        except DeploymentError:
            raise
        except (WsoError, OSError) as e:
            logger.error("Step %s failed: %s", step.value, e)
            raise DeploymentError(step, str(e)) from e

    def _provision_secrets(self, run: _Run):
        manifest = run.manifest
        for name, source in manifest.secrets.items():
            value = resolve_secret_value(name, source, self.environ, manifest.base_dir)
            if self.secret_store.exists(manifest.service_name, name) and \
                    self.secret_store.read(manifest.service_name, name) == value.encode('utf-8'):
                logger.debug("Secret %s_%s unchanged", manifest.service_name, name)
                continue
            self.secret_store.put(manifest.service_name, name, value)

    def _generate(self, run: _Run):
        run.nginx_config = self.nginx_converter.convert(run.manifest)
        run.crontab = self.crontab_converter.convert(run.manifest)

    def _update_nginx(self, run: _Run):
        state = self.config_updater.apply(run.manifest.service_name, run.nginx_config)
        run.report.nginx_state = state
        if state == UpdateState.FAILED:
            raise DeploymentError(
                DeployStep.UPDATE_NGINX,
                "nginx rejected the new configuration; the previous configuration was restored",
            )

    def _apply_stack(self, run: _Run):
        self.runtime.deploy(run.manifest.service_name, run.manifest.stack)

    def _wait_for_stack(self, run: _Run):
        ready = self.runtime.wait_for_stack(run.manifest.service_name, self.config.stack_ready_timeout)
        run.report.stack_ready = ready
        if not ready:
            logger.warning("Stack %s is not fully running after %ss, continuing",
                           run.manifest.service_name, self.config.stack_ready_timeout)

    def _install_crontab(self, run: _Run):
        run.report.crontab_changed = self.crontab_manager.install(run.manifest.service_name, run.crontab)
