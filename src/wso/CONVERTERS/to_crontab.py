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
Converters for generating cron.d fragments from a service manifest.
"""
import logging
import re
import shlex
from dataclasses import dataclass
from typing import Collection, List, Optional
from jinja2 import Template
from ..MODELS.manifest import Manifest, CronJob
from ..MODELS.platform_config import PlatformConfig
from ..MANAGERS.secret_store import SecretStore
from ..errors import SecretNotFoundError

logger = logging.getLogger(__name__)

CRON_KEYWORDS = {"@reboot", "@yearly", "@annually", "@monthly", "@weekly", "@daily", "@midnight", "@hourly"}
CRON_FIELD_RE = re.compile(r'^[0-9A-Za-z*/,-]+$')
ENV_VAR_RE = re.compile(r'^[A-Za-z_][A-Za-z0-9_]*$')
SECRET_NAME_RE = re.compile(r'^[A-Za-z0-9_-]+$')

CRONTAB_TEMPLATE = """\
# Crontab for service: {{ service_name }}
# Generated automatically by WSO from manifest cron_jobs
# Do not edit manually - changes will be overwritten on next deployment
#
# Format: minute hour day month weekday user command

SHELL=/bin/sh
PATH=/usr/local/sbin:/usr/local/bin:/sbin:/bin:/usr/sbin:/usr/bin
{% for job in jobs %}

# Job {{ job.number }}
{{ job.line }}
{% endfor %}
"""


@dataclass
class CronLine:
    number: int
    line: str


def valid_schedule(schedule: str) -> bool:
    """Five cron fields or one of the @keywords."""
    fields = schedule.split()
    if len(fields) == 1:
        return fields[0] in CRON_KEYWORDS
    return len(fields) == 5 and all(CRON_FIELD_RE.match(f) for f in fields)


class CrontabConverter:
    """
    Converts the cron jobs of a manifest into a cron.d fragment.

    Each line runs as the privileged user only long enough to read the job's
    secrets through the secret reader, then drops to the unprivileged user and
    runs the command with nothing but PATH and those secrets in its environment.
    Secrets are read when the job fires, so rotating a secret does not require
    regenerating the fragment.
    """

    def __init__(self, config: PlatformConfig, secret_store: Optional[SecretStore] = None):
        """
        :param config: The platform configuration (users, secret reader).
        :param secret_store: When given, every referenced secret must already exist.
        """
        self.config = config
        self.secret_store = secret_store
        self.template = Template(CRONTAB_TEMPLATE, trim_blocks=True, lstrip_blocks=True,
                                 keep_trailing_newline=True)

    def convert(self, manifest: Manifest) -> str:
        """
        Generates the crontab text. Invalid jobs are skipped with an error log.

        :param manifest: The service manifest.
        :return: The fragment content. Only the header when there are no valid jobs.
        :raises SecretNotFoundError: If a secret store is set and a referenced secret is
            neither stored nor declared in the manifest.
        """
        if not manifest.cron_jobs:
            logger.info("No cron jobs defined in manifest for %s", manifest.service_name)

        lines: List[CronLine] = []
        for index, job in enumerate(manifest.cron_jobs):
            line = self.convert_job(manifest.service_name, index, job, declared_secrets=manifest.secrets)
            if line is not None:
                lines.append(CronLine(number=index + 1, line=line))

        logger.info("Crontab for %s: %d of %d jobs", manifest.service_name, len(lines), len(manifest.cron_jobs))
        return self.template.render(service_name=manifest.service_name, jobs=lines)

    def convert_job(self, service_name: str, index: int, job: CronJob,
                    declared_secrets: Collection[str] = ()) -> Optional[str]:
        """
        Builds one crontab line.

        :param service_name: Namespace of the job's secrets.
        :param index: Position of the job in the manifest, for diagnostics.
        :param job: The cron job.
        :param declared_secrets: Secrets the manifest provisions itself, exempt from the store check.
        :return: The line, or None if the job is skipped.
        """
        schedule = job.schedule.strip() if isinstance(job.schedule, str) else job.schedule
        command = job.command.strip() if isinstance(job.command, str) else job.command
        if schedule is None or schedule == "":
            logger.error("Schedule at index %d is empty or null, skipping", index)
            return None
        if not isinstance(schedule, str) or not valid_schedule(schedule):
            logger.error("Schedule '%s' at index %d is invalid, skipping", schedule, index)
            return None
        if command is None or command == "":
            logger.error("Command at index %d is empty or null, skipping", index)
            return None
        if not isinstance(command, str):
            logger.error("Command at index %d is not a string, skipping", index)
            return None
        if '\n' in command or '\r' in command:
            logger.error("Command at index %d spans several lines, skipping", index)
            return None

        if not isinstance(job.secrets, dict):
            logger.error("Job at index %d: secrets must be a mapping, skipping job", index)
            return None
        fetches = []
        exports = []
        for env_var, secret_name in job.secrets.items():
            if not isinstance(env_var, str) or not ENV_VAR_RE.match(env_var):
                logger.error("Job at index %d: invalid environment variable '%s', skipping job", index, env_var)
                return None
            if secret_name is None or secret_name == "":
                logger.error("Job at index %d: secret '%s' value is empty, skipping secret", index, env_var)
                continue
            if not isinstance(secret_name, str) or not SECRET_NAME_RE.match(secret_name):
                logger.error("Job at index %d: invalid secret name '%s', skipping job", index, secret_name)
                return None
            if secret_name not in declared_secrets:
                self._check_secret(service_name, secret_name)

            reader = f"{self.config.secret_reader} {service_name} {secret_name}"
            fetches.append(f'{env_var}="$({reader})"')
            exports.append(f'{env_var}="${env_var}"')
            logger.debug("    - Secret: %s -> %s_%s", env_var, service_name, secret_name)

        run = " ".join(
            ["runuser", "-u", self.config.unprivileged_user, "--", "env", "-i", 'PATH="$PATH"']
            + exports
            + ["/bin/sh", "-c", shlex.quote(command)]
        )
        # cron turns an unescaped % into a newline
        chain = " && ".join(fetches + [run]).replace("%", "\\%")
        logger.info("  Job %d: %s", index + 1, schedule)
        return f"{schedule} {self.config.privileged_user} {chain}"

    def _check_secret(self, service_name: str, secret_name: str):
        if self.secret_store is not None and not self.secret_store.exists(service_name, secret_name):
            raise SecretNotFoundError(service_name, secret_name, self.secret_store.list(service_name))
