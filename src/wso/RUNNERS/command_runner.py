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
Execution of external commands with bounded run time.
"""
import logging
import subprocess
from typing import List, Optional

from ..errors import CommandError

logger = logging.getLogger(__name__)


class CommandRunner:
    """
    Runs a single external command to completion.
    """
    def __init__(self, timeout: Optional[float] = None):
        """
        Initializes the command runner.

        Args:
            timeout (Optional[float]): Default timeout in seconds for every command.
        """
        self.timeout = timeout

    def run(self,
            command: List[str],
            input: Optional[str] = None,
            timeout: Optional[float] = None,
            capture: bool = True) -> str:
        """
        Runs the command and returns its standard output.

        Args:
            command (List[str]): Command and arguments to execute.
            input (Optional[str]): Text fed to the command's standard input.
            timeout (Optional[float]): Overrides the default timeout.
            capture (bool): Capture stdout/stderr instead of inheriting them.

        Returns:
            str: Standard output of the command ("" when not captured).

        Raises:
            CommandError: If the command cannot be started, exits non-zero or times out.
        """
        timeout = timeout if timeout is not None else self.timeout
        logger.debug("Running: %s", ' '.join(command))
        try:
            result = subprocess.run(
                command,
                input=input,
                stdout=subprocess.PIPE if capture else None,
                stderr=subprocess.PIPE if capture else None,
                text=True,
                timeout=timeout,
                # Avoid shell=True for security reasons (CWE-78)
                shell=False,
            )
        except subprocess.TimeoutExpired as e:
            raise CommandError(command, None, _text(e.stderr)) from e
        except OSError as e:
            raise CommandError(command, 127, str(e)) from e

        if result.returncode != 0:
            raise CommandError(command, result.returncode, result.stderr or "")
        return result.stdout or ""


def _text(value) -> str:
    if value is None:
        return ""
    if isinstance(value, bytes):
        return value.decode('utf-8', errors='replace')
    return value
