from pathlib import Path
import pytest
from wso.PARSERS.config_parser import ConfigParser
from wso.errors import WsoError


def test_defaults_without_file(tmp_path):
    config = ConfigParser(environ={}).parse(str(tmp_path / "missing.conf"))
    assert config.platform_domain == ""
    assert config.nginx_conf_dir == Path("/var/lib/wso/nginx")
    assert config.secrets_dir == Path("/var/lib/wso/secrets")
    assert config.ssl_include == "/etc/nginx/conf.d/includes/ssl-common.conf"
    assert config.proxy_include == "/etc/nginx/conf.d/includes/proxy-common.conf"
    assert config.cert_path("example.com") == "/etc/letsencrypt/live/example.com"


def test_file_values(tmp_path):
    conf = tmp_path / "wso.conf"
    conf.write_text(
        "# WSO Configuration\n"
        "MAIN_DOMAIN=example.com\n"
        "WSO_NGINX_CONF_DIR=/srv/nginx\n"
        "WSO_LOCK_TIMEOUT=5\n"
        "UNRELATED=ignored\n"
    )
    config = ConfigParser(environ={}).parse(str(conf))
    assert config.platform_domain == "example.com"
    assert config.nginx_conf_dir == Path("/srv/nginx")
    assert config.lock_timeout == 5.0


def test_environment_overrides_file(tmp_path):
    conf = tmp_path / "wso.conf"
    conf.write_text("MAIN_DOMAIN=example.com\n")
    environ = {'WSO_MAIN_DOMAIN': 'example.org', 'WSO_UNPRIVILEGED_USER': 'app'}
    config = ConfigParser(environ=environ).parse(str(conf))
    assert config.platform_domain == "example.org"
    assert config.unprivileged_user == "app"


def test_invalid_value(tmp_path):
    with pytest.raises(WsoError, match="Invalid platform configuration"):
        ConfigParser(environ={'WSO_LOCK_TIMEOUT': 'soon'}).parse(None)
