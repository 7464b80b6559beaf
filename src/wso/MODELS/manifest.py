"""
Models for the service manifest: domains, default route, cron jobs, secrets and the stack payload.
"""
from typing import List, Dict, Optional, Any, Union
from pydantic import BaseModel, Field

SERVICE_NAME_PATTERN = r'^[A-Za-z0-9_-]+$'
DEFAULT_PORT = 8080


class DomainEntry(BaseModel):
    """
    A public hostname routed to a container of the service's stack.

    Fields are kept as written in the YAML document and checked by the nginx
    converter, so that a single bad entry is skipped instead of rejecting the
    whole manifest.
    """
    domain: Optional[Any] = None
    cert_name: Optional[Any] = None
    container_name: Optional[Any] = None
    port: Optional[Any] = None


class DefaultDomain(BaseModel):
    """
    Target of the platform-managed subdomain ``{service_name}.{platform_domain}``.
    """
    container_name: Optional[str] = None
    port: Optional[int] = Field(default=None, ge=1, le=65535)


class CronJob(BaseModel):
    """
    A scheduled command. ``secrets`` maps environment variable names to secret names.
    Unchecked here: the crontab converter skips jobs it cannot render.
    """
    schedule: Optional[Any] = None
    command: Optional[Any] = None
    secrets: Any = {}


class SecretSource(BaseModel):
    """
    Reference to a secret value that is resolved when the manifest is deployed.
    Exactly one of the fields is expected to be set.
    """
    value: Optional[str] = None
    env: Optional[str] = None
    file: Optional[str] = None


class Manifest(BaseModel):
    """
    Declarative description of one service.
    """
    service_name: str = Field(pattern=SERVICE_NAME_PATTERN)
    force_https: bool = False
    domains: List[DomainEntry] = []
    default_domain: Optional[DefaultDomain] = None
    cron_jobs: List[CronJob] = []
    secrets: Dict[str, Union[str, SecretSource]] = {}
    stack: Dict[str, Any] = {}

    # Directory the manifest was read from, used to resolve relative paths
    base_dir: Optional[str] = Field(default=None, exclude=True)

    def upstream(self, container_name: str) -> str:
        """
        Swarm names services ``{stack}_{service}``.
        """
        return f"{self.service_name}_{container_name}"

    def stack_services(self) -> List[str]:
        """
        Names of the services declared in the stack payload.
        """
        services = self.stack.get('services') or {}
        return list(services.keys()) if isinstance(services, dict) else []
