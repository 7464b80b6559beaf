"""
Command Line Interface for WSO.
"""
import click
import logging
import os
import sys
from ..PARSERS.config_parser import ConfigParser, DEFAULT_CONFIG_PATH
from ..PARSERS.manifest_parser import ManifestParser
from ..CONVERTERS.to_nginx import NginxConfigConverter
from ..CONVERTERS.to_crontab import CrontabConverter
from ..MANAGERS.config_updater import SafeConfigUpdater, UpdateState
from ..MANAGERS.secret_store import SecretStore
from ..MANAGERS.stack_deployer import StackDeployer
from ..RUNNERS.command_runner import CommandRunner
from ..RUNNERS.proxy_controller import DockerProxyController
from ..RUNNERS.certificate_issuer import CertbotIssuer, OVH_ENDPOINTS
from ..errors import WsoError, SecretNotFoundError


class ClickHandler(logging.Handler):
    """
    Sends log records to standard error through click.
    """
    def emit(self, record):
        try:
            click.echo(self.format(record), err=True)
        except Exception:
            self.handleError(record)


def setup_logging(verbose: bool):
    logger = logging.getLogger("wso")
    if not any(isinstance(h, ClickHandler) for h in logger.handlers):
        handler = ClickHandler()
        handler.setFormatter(logging.Formatter("[%(name)s] %(message)s"))
        logger.addHandler(handler)
    logger.setLevel(logging.DEBUG if verbose else logging.INFO)


def fail(message: str):
    click.echo(f"Error: {message}", err=True)
    sys.exit(1)


def require_root():
    if os.geteuid() != 0:
        fail("This command must be run as root")


def load_config(ctx):
    if 'config' not in ctx.obj:
        try:
            ctx.obj['config'] = ConfigParser().parse(ctx.obj['config_path'])
        except WsoError as e:
            fail(str(e))
    return ctx.obj['config']


def parse_manifest(path: str):
    try:
        return ManifestParser().parse(path)
    except WsoError as e:
        fail(str(e))


def write_output(content: str, out):
    if out:
        with open(out, 'w') as f:
            f.write(content)
        click.echo(f"Written to {out}", err=True)
    else:
        click.echo(content, nl=False)


def proxy_controller(config):
    runner = CommandRunner(timeout=config.command_timeout)
    return DockerProxyController(runner, container_filter=config.nginx_container)


def certificate_issuer(config):
    return CertbotIssuer(
        CommandRunner(timeout=config.command_timeout),
        letsencrypt_dir=config.letsencrypt_dir,
        letsencrypt_lib_dir=config.letsencrypt_lib_dir,
        acme_webroot=config.acme_webroot,
        credentials_dir=config.certbot_credentials_dir,
        email=config.certbot_email,
    )


def split_domains(domains: str):
    return [d.strip() for d in domains.split(',') if d.strip()]


@click.group()
@click.option('--config', '-c', 'config_path', default=DEFAULT_CONFIG_PATH, help='Platform configuration file')
@click.option('--verbose', '-v', is_flag=True, help='Show debug output')
@click.pass_context
def cli(ctx, config_path, verbose):
    """
    WSO - Docker Swarm reverse-proxy platform.

    Deploys services described by a manifest behind the global nginx service.
    """
    ctx.ensure_object(dict)
    ctx.obj['config_path'] = config_path
    setup_logging(verbose)


@cli.command()
@click.argument('manifest', required=False, type=click.Path(dir_okay=False))
@click.option('--image', '-i', help='Pull this image and deploy the manifest stored inside it')
@click.option('--manifest-path', default='/app/wso.yml', show_default=True,
              help='Path of the manifest inside the image')
@click.pass_context
def deploy(ctx, manifest, image, manifest_path):
    """Deploy a service from its manifest."""
    if bool(manifest) == bool(image):
        fail("Give either a MANIFEST file or --image")
    require_root()
    config = load_config(ctx)
    deployer = StackDeployer.from_config(config)
    try:
        if image:
            report = deployer.deploy_image(image, manifest_path)
        else:
            report = deployer.deploy(parse_manifest(manifest))
    except WsoError as e:
        fail(str(e))

    click.echo("========================================")
    click.echo("Deployment completed")
    click.echo(f"Stack: {report.service_name} ({report.mode.value})")
    click.echo(f"Nginx: {report.nginx_state.value if report.nginx_state else '-'}")
    click.echo(f"Crontab: {'updated' if report.crontab_changed else 'unchanged'}")
    click.echo("")
    click.echo("Commands:")
    click.echo(f"  docker stack services {report.service_name}")
    click.echo("  docker service logs <service-name>")
    click.echo(f"  docker stack rm {report.service_name}")
    click.echo("========================================")


@cli.group()
def generate():
    """Render configuration fragments without installing them."""


@generate.command('nginx')
@click.argument('manifest', type=click.Path(exists=True, dir_okay=False))
@click.option('--out', '-o', type=click.Path(dir_okay=False), help='Output file (default: stdout)')
@click.pass_context
def generate_nginx(ctx, manifest, out):
    """Generate the nginx fragment of a manifest."""
    config = load_config(ctx)
    try:
        content = NginxConfigConverter(config).convert(parse_manifest(manifest))
    except WsoError as e:
        fail(str(e))
    write_output(content, out)


@generate.command('crontab')
@click.argument('manifest', type=click.Path(exists=True, dir_okay=False))
@click.option('--out', '-o', type=click.Path(dir_okay=False), help='Output file (default: stdout)')
@click.pass_context
def generate_crontab(ctx, manifest, out):
    """Generate the crontab fragment of a manifest."""
    config = load_config(ctx)
    try:
        content = CrontabConverter(config).convert(parse_manifest(manifest))
    except WsoError as e:
        fail(str(e))
    write_output(content, out)


@cli.group()
def nginx():
    """Manage the global nginx service."""


@nginx.command('update')
@click.argument('service')
@click.argument('source', type=click.Path(exists=True, dir_okay=False))
@click.pass_context
def nginx_update(ctx, service, source):
    """Safely install SOURCE as the nginx fragment of SERVICE."""
    require_root()
    config = load_config(ctx)
    with open(source, 'r') as f:
        content = f.read()
    updater = SafeConfigUpdater(config.nginx_conf_dir, proxy_controller(config),
                                lock_dir=config.lock_dir, lock_timeout=config.lock_timeout)
    try:
        state = updater.apply(service, content)
    except WsoError as e:
        fail(str(e))
    if state == UpdateState.FAILED:
        fail(f"Nginx configuration for '{service}' was rejected; previous configuration restored")
    click.echo(f"Nginx configuration for '{service}': {state.value}")


@nginx.command('reload')
@click.pass_context
def nginx_reload(ctx):
    """Reload nginx without dropping connections."""
    proxy = proxy_controller(load_config(ctx))
    try:
        proxy.reload()
    except WsoError as e:
        fail(str(e))
    click.echo("Nginx reloaded.")


@nginx.command('verify')
@click.pass_context
def nginx_verify(ctx):
    """Check the syntax of the live nginx configuration."""
    proxy = proxy_controller(load_config(ctx))
    try:
        proxy.validate_config()
    except WsoError as e:
        fail(str(e))
    click.echo("Nginx configuration syntax is valid.")


@cli.group()
def secret():
    """Manage host secrets."""


@secret.command('set')
@click.argument('service')
@click.argument('name')
@click.option('--value', help='Secret value (default: read from stdin)')
@click.pass_context
def secret_set(ctx, service, name, value):
    """Create or replace secret NAME of SERVICE."""
    if value is None:
        value = click.get_text_stream('stdin').read()
    store = SecretStore(load_config(ctx).secrets_dir)
    try:
        path = store.put(service, name, value)
    except WsoError as e:
        fail(str(e))
    click.echo(f"Stored {path}")


@secret.command('get')
@click.argument('service')
@click.argument('name')
@click.pass_context
def secret_get(ctx, service, name):
    """Print secret NAME of SERVICE."""
    store = SecretStore(load_config(ctx).secrets_dir)
    try:
        data = store.read(service, name)
    except SecretNotFoundError as e:
        click.echo(f"Error: Host secret '{service}_{name}' not found", err=True)
        click.echo(f"Available secrets for service '{service}':", err=True)
        for available in e.available or ["(none)"]:
            click.echo(f"  {available}", err=True)
        sys.exit(1)
    except WsoError as e:
        fail(str(e))
    stdout = click.get_binary_stream('stdout')
    stdout.write(data)
    stdout.flush()


@secret.command('list')
@click.argument('service')
@click.pass_context
def secret_list(ctx, service):
    """List the secrets of SERVICE."""
    store = SecretStore(load_config(ctx).secrets_dir)
    try:
        names = store.list(service)
    except WsoError as e:
        fail(str(e))
    for name in names:
        click.echo(name)


@secret.command('delete')
@click.argument('service')
@click.argument('name')
@click.pass_context
def secret_delete(ctx, service, name):
    """Delete secret NAME of SERVICE."""
    store = SecretStore(load_config(ctx).secrets_dir)
    try:
        store.delete(service, name)
    except WsoError as e:
        fail(str(e))
    click.echo(f"Deleted {service}_{name}")


@cli.group()
def cert():
    """Obtain and renew Let's Encrypt certificates."""


@cert.command('gen')
@click.argument('domains')
@click.pass_context
def cert_gen(ctx, domains):
    """Issue a certificate for comma-separated DOMAINS (webroot challenge)."""
    issuer = certificate_issuer(load_config(ctx))
    try:
        issuer.issue_webroot(split_domains(domains))
    except WsoError as e:
        fail(str(e))
    click.echo("Certificate issued.")


@cert.command('gen-dns')
@click.argument('domains')
@click.pass_context
def cert_gen_dns(ctx, domains):
    """Issue a certificate for comma-separated DOMAINS, wildcards included (OVH DNS-01)."""
    issuer = certificate_issuer(load_config(ctx))
    try:
        if not issuer.ovh_credentials_path.exists():
            click.echo("OVH API credentials are not configured.")
            click.echo("Create them at https://eu.api.ovh.com/createToken/ (or ca.api.ovh.com)")
            click.echo("with GET/PUT/POST/DELETE rights on /domain/zone/*")
            endpoint = click.prompt("OVH endpoint", type=click.Choice(OVH_ENDPOINTS), default=OVH_ENDPOINTS[0])
            application_key = click.prompt("Application Key")
            application_secret = click.prompt("Application Secret", hide_input=True)
            consumer_key = click.prompt("Consumer Key", hide_input=True)
            path = issuer.write_ovh_credentials(endpoint, application_key, application_secret, consumer_key)
            click.echo(f"Credentials saved in {path} (mode 600)")
        issuer.issue_dns(split_domains(domains))
    except WsoError as e:
        fail(str(e))
    click.echo("Certificate issued.")


@cert.command('renew')
@click.pass_context
def cert_renew(ctx):
    """Renew due certificates and reload nginx."""
    config = load_config(ctx)
    try:
        certificate_issuer(config).renew()
        proxy_controller(config).reload()
    except WsoError as e:
        fail(str(e))
    click.echo("Certificates renewed.")


def main():
    """
    Main entry point for the CLI.
    """
    cli(obj={})


if __name__ == '__main__':
    main()
