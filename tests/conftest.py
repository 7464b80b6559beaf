"""
Shared fixtures and test doubles for the external collaborators.
"""
import textwrap
import pytest
from wso.MODELS.platform_config import PlatformConfig
from wso.PARSERS.manifest_parser import ManifestParser
from wso.RUNNERS.proxy_controller import ProxyController
from wso.RUNNERS.stack_runtime import StackRuntime
from wso.errors import ProxyError, StackError


class FakeProxy(ProxyController):
    """Records calls instead of talking to nginx."""

    def __init__(self, events=None, fail_validate=False, fail_reload=False):
        self.events = events if events is not None else []
        self.fail_validate = fail_validate
        self.fail_reload = fail_reload

    def validate_config(self):
        self.events.append('validate')
        if self.fail_validate:
            raise ProxyError("nginx: [emerg] unexpected \"}\"")

    def reload(self):
        self.events.append('reload')
        if self.fail_reload:
            raise ProxyError("Failed to reload nginx")

    def count(self, name):
        return self.events.count(name)


class FakeRuntime(StackRuntime):
    """In-memory stack platform."""

    def __init__(self, events=None, existing=(), fail_deploy=False, ready=True, manifest_text=None):
        self.events = events if events is not None else []
        self.stacks = {name: {} for name in existing}
        self.fail_deploy = fail_deploy
        self.ready = ready
        self.manifest_text = manifest_text

    def pull_image(self, image):
        self.events.append('pull')

    def extract_file(self, image, source_path, dest_path):
        self.events.append('extract')
        if self.manifest_text is None:
            raise StackError(f"File {source_path} not found in image {image}")
        with open(dest_path, 'w') as f:
            f.write(self.manifest_text)

    def stack_exists(self, name):
        return name in self.stacks

    def deploy(self, name, payload):
        self.events.append('deploy')
        if self.fail_deploy:
            raise StackError(f"Failed to deploy stack {name}")
        self.stacks[name] = payload

    def wait_for_stack(self, name, timeout):
        self.events.append('wait')
        return self.ready


def parse_manifest(content, context=None):
    return ManifestParser(context=context or {}).parse_from_string(textwrap.dedent(content))


@pytest.fixture
def config(tmp_path):
    nginx_dir = tmp_path / "nginx"
    nginx_dir.mkdir()
    return PlatformConfig(
        platform_domain="example.com",
        nginx_conf_dir=nginx_dir,
        secrets_dir=tmp_path / "secrets",
        crontab_dir=tmp_path / "cron.d",
        lock_dir=tmp_path / "locks",
        certbot_credentials_dir=tmp_path / "certbot",
        stack_ready_timeout=0,
        stack_ready_interval=0.01,
    )


@pytest.fixture
def events():
    return []
