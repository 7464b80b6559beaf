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
Certificate issuance through certbot containers (webroot and OVH DNS-01 challenges).
"""
import logging
import os
from abc import ABC, abstractmethod
from pathlib import Path
from typing import List, Optional, Union

from .command_runner import CommandRunner
from ..errors import CertificateError, CommandError
from ..UTILS.file_ops import atomic_write

logger = logging.getLogger(__name__)

OVH_ENDPOINTS = ("ovh-eu", "ovh-ca")


class CertificateIssuer(ABC):
    """
    Narrow interface to the certificate-issuance tooling.
    """

    @abstractmethod
    def issue_webroot(self, domains: List[str]) -> None:
        """Obtain one certificate for ``domains`` through the HTTP-01 webroot challenge."""

    @abstractmethod
    def issue_dns(self, domains: List[str]) -> None:
        """Obtain one certificate for ``domains`` (wildcards allowed) through DNS-01."""

    @abstractmethod
    def renew(self) -> None:
        """Renew every certificate that is due."""


class CertbotIssuer(CertificateIssuer):
    """
    Runs the official certbot images with the platform's certificate directories mounted.
    """
    WEBROOT_IMAGE = "certbot/certbot"
    DNS_IMAGE = "certbot/dns-ovh"

    def __init__(self,
                 runner: CommandRunner,
                 letsencrypt_dir: Union[str, Path],
                 letsencrypt_lib_dir: Union[str, Path],
                 acme_webroot: Union[str, Path],
                 credentials_dir: Union[str, Path],
                 email: Optional[str] = None,
                 docker: str = "docker"):
        """
        Args:
            runner: Executes the docker commands.
            letsencrypt_dir: Host directory mounted as /etc/letsencrypt.
            letsencrypt_lib_dir: Host directory mounted as /var/lib/letsencrypt.
            acme_webroot: Host directory served by nginx for ACME challenges.
            credentials_dir: Host directory holding ovh.ini.
            email: Registration e-mail. Without it certbot registers without one.
            docker: Path or name of the docker binary.
        """
        self.runner = runner
        self.letsencrypt_dir = str(letsencrypt_dir)
        self.letsencrypt_lib_dir = str(letsencrypt_lib_dir)
        self.acme_webroot = str(acme_webroot)
        self.credentials_dir = Path(credentials_dir)
        self.email = email
        self.docker = docker

    @property
    def ovh_credentials_path(self) -> Path:
        return self.credentials_dir / "ovh.ini"

    def write_ovh_credentials(self, endpoint: str, application_key: str,
                              application_secret: str, consumer_key: str) -> Path:
        """
        Writes ovh.ini for certbot-dns-ovh with 0600 permissions.

        Returns:
            Path of the credentials file.
        """
        if endpoint not in OVH_ENDPOINTS:
            raise CertificateError(f"Unknown OVH endpoint '{endpoint}'")
        if not (application_key and application_secret and consumer_key):
            raise CertificateError("All OVH credentials are required")
        self.credentials_dir.mkdir(parents=True, exist_ok=True)
        content = (
            "# OVH API credentials for certbot-dns-ovh\n"
            f"dns_ovh_endpoint = {endpoint}\n"
            f"dns_ovh_application_key = {application_key}\n"
            f"dns_ovh_application_secret = {application_secret}\n"
            f"dns_ovh_consumer_key = {consumer_key}\n"
        )
        atomic_write(self.ovh_credentials_path, content, mode=0o600)
        return self.ovh_credentials_path

    def issue_webroot(self, domains: List[str]) -> None:
        command = self._docker_run("certbot", self.WEBROOT_IMAGE, [
            "-v", f"{self.acme_webroot}:/srv/webroot",
        ])
        command += ["certonly", "--webroot", "-w", "/srv/webroot"]
        command += self._account_args() + self._domain_args(domains)
        self._run(command, f"issue certificate for {', '.join(domains)}")

    def issue_dns(self, domains: List[str]) -> None:
        if not os.path.exists(self.ovh_credentials_path):
            raise CertificateError(f"OVH credentials not found at {self.ovh_credentials_path}")
        command = self._docker_run("certbot-ovh", self.DNS_IMAGE, [
            "-v", f"{self.credentials_dir}:/secrets/certbot:ro",
        ])
        command += ["certonly", "--dns-ovh", "--dns-ovh-credentials", "/secrets/certbot/ovh.ini"]
        command += self._account_args() + self._domain_args(domains)
        self._run(command, f"issue DNS certificate for {', '.join(domains)}")

    def renew(self) -> None:
        # dns-ovh image also handles webroot renewals
        command = self._docker_run("certbot", self.DNS_IMAGE, [
            "-v", f"{self.acme_webroot}:/srv/webroot",
            "-v", f"{self.credentials_dir}:/secrets/certbot:ro",
        ])
        command += ["renew", "--non-interactive"]
        self._run(command, "renew certificates")

    def _docker_run(self, name: str, image: str, extra_mounts: List[str]) -> List[str]:
        return [
            self.docker, "run", "--rm", "--name", name,
            "-v", f"{self.letsencrypt_dir}:/etc/letsencrypt",
            "-v", f"{self.letsencrypt_lib_dir}:/var/lib/letsencrypt",
        ] + extra_mounts + [image]

    def _account_args(self) -> List[str]:
        args = ["--non-interactive", "--agree-tos"]
        if self.email:
            args += ["--email", self.email]
        else:
            args += ["--register-unsafely-without-email"]
        return args

    @staticmethod
    def _domain_args(domains: List[str]) -> List[str]:
        domains = [d.strip() for d in domains if d.strip()]
        if not domains:
            raise CertificateError("At least one domain is required")
        args = []
        for domain in domains:
            args += ["-d", domain]
        return args

    def _run(self, command: List[str], action: str) -> None:
        logger.info("Running certbot to %s", action)
        try:
            self.runner.run(command, capture=False)
        except CommandError as e:
            raise CertificateError(f"Failed to {action}: {e}") from e
