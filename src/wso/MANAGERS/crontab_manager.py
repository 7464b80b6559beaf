"""
Installation of generated crontab fragments into the system cron.d directory.
"""
import logging
from pathlib import Path
from typing import Union

from ..UTILS.file_ops import atomic_write, checksum, file_checksum

logger = logging.getLogger(__name__)


class CrontabManager:
    """
    Manages one ``wso-{service}`` file per service in the cron.d directory.
    """
    PREFIX = "wso-"

    def __init__(self, crontab_dir: Union[str, Path] = "/etc/cron.d"):
        """
        Initializes the crontab manager.

        :param crontab_dir: The directory read by the cron daemon.
        """
        self.crontab_dir = Path(crontab_dir)

    def path_for(self, service_name: str) -> Path:
        # cron ignores cron.d files whose names contain dots
        return self.crontab_dir / f"{self.PREFIX}{service_name}"

    def install(self, service_name: str, content: str) -> bool:
        """
        Installs the fragment of a service if it differs from the live one.

        :param service_name: The service owning the fragment.
        :param content: Generated crontab text.
        :return: True if the file was written, False if it was already up to date.
        """
        path = self.path_for(service_name)
        if checksum(content) == file_checksum(path):
            logger.info("Crontab for '%s' is already up to date", service_name)
            return False
        self.crontab_dir.mkdir(parents=True, exist_ok=True)
        atomic_write(path, content, mode=0o644)
        logger.info("Crontab installed: %s", path)
        return True

    def remove(self, service_name: str) -> bool:
        """
        Removes the fragment of a service.

        :return: True if a file was removed.
        """
        path = self.path_for(service_name)
        if not path.exists():
            return False
        path.unlink()
        logger.info("Crontab removed: %s", path)
        return True
