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
Checksum-gated installation of nginx fragments with validation and rollback.
"""
import logging
import os
import re
import shutil
from enum import Enum
from pathlib import Path
from typing import Optional, Union

from ..RUNNERS.proxy_controller import ProxyController
from ..UTILS.file_ops import atomic_write, checksum, file_checksum
from ..UTILS.service_lock import ServiceLock
from ..errors import ConfigUpdateError, ProxyError

logger = logging.getLogger(__name__)

SERVICE_NAME_RE = re.compile(r'^[A-Za-z0-9_-]+$')


class UpdateState(str, Enum):
    """Terminal states of one update."""

    UNCHANGED = "unchanged"
    APPLIED = "applied"
    FAILED = "failed"


class SafeConfigUpdater:
    """
    Installs ``{config_dir}/{service}.conf`` so that the proxy only ever runs
    configuration that passed its syntax check.

    Compare -> Backup -> Install -> Validate -> Reload, rolling back to the
    previous fragment (or removing a first-time fragment) when validation or
    reload fails. The whole sequence runs under a per-service lock.
    """

    def __init__(self,
                 config_dir: Union[str, Path],
                 proxy: ProxyController,
                 lock_dir: Optional[Union[str, Path]] = None,
                 lock_timeout: float = 120.0):
        """
        :param config_dir: Live configuration directory shared with the proxy.
        :param proxy: Validates and reloads the proxy.
        :param lock_dir: Directory of the per-service lock files. Defaults to ``{config_dir}/.locks``.
        :param lock_timeout: Seconds to wait for a concurrent update of the same service.
        """
        self.config_dir = Path(config_dir)
        self.proxy = proxy
        self.lock_dir = Path(lock_dir) if lock_dir else self.config_dir / ".locks"
        self.lock_timeout = lock_timeout

    def target_path(self, service_name: str) -> Path:
        if not SERVICE_NAME_RE.match(service_name or ""):
            raise ConfigUpdateError(
                f"Invalid service name '{service_name}'. "
                "Only alphanumeric characters, dashes, and underscores allowed."
            )
        return self.config_dir / f"{service_name}.conf"

    @staticmethod
    def backup_path(target: Path) -> Path:
        return target.with_name(target.name + ".backup")

    def apply(self, service_name: str, content: str) -> UpdateState:
        """
        Applies a candidate fragment.

        :param service_name: Fragment name.
        :param content: Candidate fragment text.
        :return: UNCHANGED, APPLIED or FAILED. On FAILED the directory holds
            exactly what it held before the call.
        :raises ConfigUpdateError: If the configuration directory does not exist.
        """
        target = self.target_path(service_name)
        if not self.config_dir.is_dir():
            raise ConfigUpdateError(f"Configuration directory {self.config_dir} does not exist")

        with ServiceLock(self.lock_dir, service_name, timeout=self.lock_timeout):
            return self._apply_locked(service_name, target, content)

    def _apply_locked(self, service_name: str, target: Path, content: str) -> UpdateState:
        if checksum(content) == file_checksum(target):
            logger.info("Nginx configuration for '%s' is already up to date (checksum match)", service_name)
            return UpdateState.UNCHANGED

        logger.info("Updating nginx configuration for service '%s'...", service_name)
        backup = self.backup_path(target)
        has_backup = target.exists()
        if has_backup:
            logger.info("Creating backup: %s", backup)
            shutil.copy2(target, backup)

        try:
            logger.info("Installing new configuration: %s", target)
            atomic_write(target, content)
            self.proxy.validate_config()
            self.proxy.reload()
        except OSError as e:
            logger.error("Failed to install %s: %s", target, e)
            self._rollback(target, backup, has_backup)
            return UpdateState.FAILED
        except ProxyError as e:
            logger.error("%s", e)
            self._rollback(target, backup, has_backup)
            return UpdateState.FAILED
        except BaseException:
            # interrupted while the candidate is live
            logger.error("Update of '%s' interrupted, restoring previous configuration", service_name)
            self._rollback(target, backup, has_backup)
            raise

        if has_backup:
            backup.unlink()
        logger.info("Nginx configuration for '%s' updated successfully", service_name)
        return UpdateState.APPLIED

    def _rollback(self, target: Path, backup: Path, has_backup: bool):
        """
        Restores the previous fragment, or removes a first-time one.
        """
        if has_backup:
            logger.info("Restoring backup configuration...")
            os.replace(backup, target)
        elif target.exists():
            logger.info("Removing invalid configuration file...")
            target.unlink()
