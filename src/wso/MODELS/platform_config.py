"""
Models for the host-wide platform configuration.
"""
from pathlib import Path
from typing import Optional
from pydantic import BaseModel, Field


class PlatformConfig(BaseModel):
    """
    Paths, identities and timeouts shared by every deployment on the host.
    Equivalent to a parsed /etc/wso/wso.conf.
    """
    # Domain under which every service gets ``{service}.{platform_domain}``
    platform_domain: str = ""

    # Nginx
    nginx_conf_dir: Path = Path("/var/lib/wso/nginx")
    nginx_includes_dir: str = "/etc/nginx/conf.d/includes"
    nginx_container: str = "system_nginx"
    error_page_root: str = "/usr/share/nginx/html"

    # Certificates (paths as seen from inside the nginx container)
    acme_webroot: str = "/var/lib/wso/acme-challenge"
    letsencrypt_live_dir: str = "/etc/letsencrypt/live"

    # Certificates (host paths mounted into certbot)
    letsencrypt_dir: Path = Path("/var/lib/wso/letsencrypt")
    letsencrypt_lib_dir: Path = Path("/var/lib/wso/letsencrypt-lib")
    certbot_credentials_dir: Path = Path("/var/lib/wso/certbot")
    certbot_email: Optional[str] = None

    # Secrets and cron
    secrets_dir: Path = Path("/var/lib/wso/secrets")
    crontab_dir: Path = Path("/etc/cron.d")
    # Resolved through the PATH line of the generated crontab
    secret_reader: str = "wso secret get"
    privileged_user: str = "root"
    unprivileged_user: str = "deployer"

    # Locking and timeouts (seconds)
    lock_dir: Path = Path("/run/wso/locks")
    lock_timeout: float = Field(default=120.0, gt=0)
    command_timeout: float = Field(default=300.0, gt=0)
    stack_ready_timeout: float = Field(default=60.0, ge=0)
    stack_ready_interval: float = Field(default=2.0, gt=0)

    @property
    def ssl_include(self) -> str:
        return f"{self.nginx_includes_dir}/ssl-common.conf"

    @property
    def proxy_include(self) -> str:
        return f"{self.nginx_includes_dir}/proxy-common.conf"

    def cert_path(self, cert_name: str) -> str:
        return f"{self.letsencrypt_live_dir}/{cert_name}"
