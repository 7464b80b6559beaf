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
Converters for generating nginx server blocks from a service manifest.
"""
import logging
import re
from dataclasses import dataclass
from typing import Any, List, Optional
from jinja2 import Template
from ..MODELS.manifest import Manifest, DefaultDomain, DomainEntry, DEFAULT_PORT
from ..MODELS.platform_config import PlatformConfig
from ..errors import GenerationError

logger = logging.getLogger(__name__)

# Values interpolated into the config must not be able to close a directive or block
HOSTNAME_RE = re.compile(r'^(\*\.)?[A-Za-z0-9]([A-Za-z0-9-]*[A-Za-z0-9])?(\.[A-Za-z0-9]([A-Za-z0-9-]*[A-Za-z0-9])?)*$')
CONTAINER_RE = re.compile(r'^[A-Za-z0-9][A-Za-z0-9_.-]*$')
CERT_NAME_RE = re.compile(r'^[A-Za-z0-9*][A-Za-z0-9_.*-]*$')

NGINX_TEMPLATE = """\
# Nginx configuration for service: {{ service_name }}
# Generated automatically by WSO from manifest domains
# Do not edit manually - changes will be overwritten on next deployment
{% for server in servers %}

# HTTP server block for {{ server.description }}
server {
    listen [::]:80;
    listen 80;
    server_name {{ server.server_name }};

    # ACME challenge for Let's Encrypt certificate validation
    location /.well-known/acme-challenge {
        alias {{ acme_webroot }}/.well-known/acme-challenge;
        try_files $uri =404;
    }

{% if force_https %}
    # Force HTTPS redirect
    location / {
        return 301 https://$host$request_uri;
    }
{% else %}
    # Proxy to container
    location / {
        proxy_pass http://{{ server.upstream }}:{{ server.port }};
        include {{ proxy_include }};
    }
{% endif %}
}

# HTTPS server block for {{ server.description }}
server {
    listen [::]:443 ssl;
    listen 443 ssl;
    server_name {{ server.server_name }};

    # SSL Certificate paths
    ssl_certificate     {{ server.cert_path }}/fullchain.pem;
    ssl_certificate_key {{ server.cert_path }}/privkey.pem;

    # Include common SSL configuration
    include {{ ssl_include }};

    # Proxy to container
    location / {
        proxy_pass http://{{ server.upstream }}:{{ server.port }};
        include {{ proxy_include }};
    }

    # Custom error pages
    error_page 502 503 504 /50x.html;
    location = /50x.html {
        root {{ error_page_root }};
    }
}
{% endfor %}
"""


@dataclass
class ServerTarget:
    """One HTTP+HTTPS server pair."""
    server_name: str
    upstream: str
    port: int
    cert_path: str
    description: str


class NginxConfigConverter:
    """
    Converts a manifest into the nginx fragment of its service.

    The output only depends on the manifest and the platform configuration, so
    converting the same manifest twice yields byte-identical text.
    """

    def __init__(self, config: PlatformConfig):
        """
        Initializes the nginx converter.

        :param config: The platform configuration (paths, platform domain).
        """
        self.config = config
        self.template = Template(NGINX_TEMPLATE, trim_blocks=True, lstrip_blocks=True,
                                 keep_trailing_newline=True)

    def convert(self, manifest: Manifest) -> str:
        """
        Generates the nginx configuration text.

        :param manifest: The service manifest.
        :return: The fragment content.
        :raises GenerationError: If the platform subdomain has no container to route to.
        """
        logger.info("Generating nginx configuration for %s (%d custom domains, force_https=%s)",
                    manifest.service_name, len(manifest.domains), manifest.force_https)

        servers = self.domain_targets(manifest)
        servers.append(self.platform_target(manifest))

        return self.template.render(
            service_name=manifest.service_name,
            servers=servers,
            force_https=manifest.force_https,
            acme_webroot=self.config.acme_webroot,
            ssl_include=self.config.ssl_include,
            proxy_include=self.config.proxy_include,
            error_page_root=self.config.error_page_root,
        )

    def domain_targets(self, manifest: Manifest) -> List[ServerTarget]:
        """
        Resolves the configured domains, skipping unusable entries.

        :param manifest: The service manifest.
        :return: One target per usable domain entry, in declaration order.
        """
        targets = []
        for index, entry in enumerate(manifest.domains):
            if entry.domain is None or entry.domain == "":
                logger.warning("Domain at index %d is empty or null, skipping", index)
                continue
            if not isinstance(entry.domain, str) or not HOSTNAME_RE.match(entry.domain):
                logger.warning("Domain '%s' at index %d is not a valid hostname, skipping", entry.domain, index)
                continue
            if entry.container_name is None or entry.container_name == "":
                logger.warning("container_name for domain '%s' is required, skipping", entry.domain)
                continue
            if not isinstance(entry.container_name, str) or not CONTAINER_RE.match(entry.container_name):
                logger.warning("container_name '%s' for domain '%s' is invalid, skipping",
                               entry.container_name, entry.domain)
                continue

            cert_name = entry.cert_name or f"{manifest.service_name}_{entry.domain}"
            if not isinstance(cert_name, str) or not CERT_NAME_RE.match(cert_name):
                logger.warning("cert_name '%s' for domain '%s' is invalid, skipping", cert_name, entry.domain)
                continue

            port = valid_port(entry.port)
            if port is None:
                logger.warning("port '%s' for domain '%s' is invalid, skipping", entry.port, entry.domain)
                continue

            target = ServerTarget(
                server_name=entry.domain,
                upstream=manifest.upstream(entry.container_name),
                port=port,
                cert_path=self.config.cert_path(cert_name),
                description=entry.domain,
            )
            logger.info("  - %s -> %s:%s (cert: %s)", target.server_name, target.upstream, target.port, cert_name)
            targets.append(target)
        return targets

    def platform_target(self, manifest: Manifest) -> ServerTarget:
        """
        Resolves ``{service_name}.{platform_domain}``.

        Container and port are resolved independently: each comes from
        ``default_domain`` when set there, otherwise from the first domain
        entry, and the port finally defaults to 8080. It is served with the
        platform's wildcard certificate.

        :param manifest: The service manifest.
        :return: The platform subdomain target.
        :raises GenerationError: If no container or port can be resolved or the platform domain is unset.
        """
        platform_domain = self.config.platform_domain
        if not platform_domain:
            raise GenerationError("Platform domain is not configured (MAIN_DOMAIN in /etc/wso/wso.conf)")

        container, raw_port = self._default_route(manifest)
        if not container:
            raise GenerationError(
                "Either 'default_domain.container_name' or 'domains[0].container_name' must be specified"
            )
        if not isinstance(container, str) or not CONTAINER_RE.match(container):
            raise GenerationError(f"Default container name '{container}' is invalid")
        port = valid_port(raw_port)
        if port is None:
            raise GenerationError(f"Default port '{raw_port}' is invalid")

        server_name = f"{manifest.service_name}.{platform_domain}"
        target = ServerTarget(
            server_name=server_name,
            upstream=manifest.upstream(container),
            port=port,
            cert_path=self.config.cert_path(platform_domain),
            description=f"platform subdomain {server_name}",
        )
        logger.info("  - %s -> %s:%s (cert: %s wildcard)", server_name, target.upstream, target.port, platform_domain)
        return target

    @staticmethod
    def _default_route(manifest: Manifest):
        default = manifest.default_domain or DefaultDomain()
        first = manifest.domains[0] if manifest.domains else DomainEntry()
        container = default.container_name or first.container_name
        port = default.port if default.port is not None else first.port
        return container, port


def valid_port(value: Any) -> Optional[int]:
    """
    TCP port of a manifest entry, DEFAULT_PORT when unset, None when invalid.
    """
    if value is None:
        return DEFAULT_PORT
    if isinstance(value, str) and value.isdigit():
        value = int(value)
    if isinstance(value, bool) or not isinstance(value, int) or not 1 <= value <= 65535:
        return None
    return value
