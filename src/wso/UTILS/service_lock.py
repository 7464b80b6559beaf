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
Per-service advisory locking.
"""
import fcntl
import logging
import os
import time
from pathlib import Path
from typing import Optional, Union

from ..errors import LockTimeoutError

logger = logging.getLogger(__name__)


class ServiceLock:
    """
    Exclusive flock(2) held on ``{lock_dir}/{service}.lock``.

    Two deployments of the same service serialize on it; deployments of
    different services never contend. Used as a context manager::

        with ServiceLock("/run/wso/locks", "myapp"):
            ...
    """

    def __init__(self,
                 lock_dir: Union[str, Path],
                 service_name: str,
                 timeout: float = 120.0,
                 poll_interval: float = 0.2):
        """
        :param lock_dir: Directory holding the lock files. Created if missing.
        :param service_name: Key of the lock.
        :param timeout: Seconds to wait for the lock before giving up.
        :param poll_interval: Seconds between acquisition attempts.
        """
        self.path = Path(lock_dir) / f"{service_name}.lock"
        self.service_name = service_name
        self.timeout = timeout
        self.poll_interval = poll_interval
        self._fd: Optional[int] = None

    def acquire(self):
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd = os.open(str(self.path), os.O_RDWR | os.O_CREAT, 0o600)
        deadline = time.monotonic() + self.timeout
        while True:
            try:
                fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
                break
            except BlockingIOError:
                if time.monotonic() >= deadline:
                    os.close(fd)
                    raise LockTimeoutError(
                        f"Another deployment of '{self.service_name}' holds {self.path}"
                    )
                time.sleep(self.poll_interval)
        logger.debug("Acquired lock %s", self.path)
        self._fd = fd

    def release(self):
        if self._fd is not None:
            fcntl.flock(self._fd, fcntl.LOCK_UN)
            os.close(self._fd)
            self._fd = None
            logger.debug("Released lock %s", self.path)

    @property
    def locked(self) -> bool:
        return self._fd is not None

    def __enter__(self):
        self.acquire()
        return self

    def __exit__(self, exc_type, exc, tb):
        self.release()
        return False
