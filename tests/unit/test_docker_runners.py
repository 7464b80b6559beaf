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
Unit tests for the docker-backed runtime, proxy controller and certificate issuer.
"""
import os
import stat
import pytest
import yaml
from wso.RUNNERS.stack_runtime import DockerStackRuntime, replicas_ready
from wso.RUNNERS.proxy_controller import DockerProxyController
from wso.RUNNERS.certificate_issuer import CertbotIssuer
from wso.errors import CommandError, ProxyError, StackError, CertificateError


class FakeRunner:
    """Returns scripted outputs keyed by the first arguments of a command."""

    def __init__(self, outputs=None, failures=()):
        self.outputs = outputs or {}
        self.failures = failures
        self.commands = []
        self.inputs = []

    def run(self, command, input=None, timeout=None, capture=True):
        self.commands.append(command)
        self.inputs.append(input)
        for prefix in self.failures:
            if tuple(command[:len(prefix)]) == prefix:
                raise CommandError(command, 1, "error")
        for prefix, output in self.outputs.items():
            if tuple(command[:len(prefix)]) == prefix:
                return output() if callable(output) else output
        return ""


class TestReplicasReady:
    """Tests for replicas_ready."""

    def test_ready(self):
        assert replicas_ready(["1/1", "3/3 (max 1 per node)"])

    def test_not_ready(self):
        assert not replicas_ready(["1/1", "0/2"])
        assert not replicas_ready([])
        assert not replicas_ready(["garbage"])


class TestDockerStackRuntime:
    """Tests for DockerStackRuntime."""

    def test_stack_exists(self):
        runner = FakeRunner({("docker", "stack", "ls"): "system\nshop\n"})
        runtime = DockerStackRuntime(runner)
        assert runtime.stack_exists("shop")
        assert not runtime.stack_exists("sho")

    def test_deploy_sends_payload_on_stdin(self):
        runner = FakeRunner()
        payload = {'services': {'web': {'image': 'shop:1.0'}}}
        DockerStackRuntime(runner).deploy("shop", payload)
        assert runner.commands[0] == ["docker", "stack", "deploy", "--with-registry-auth",
                                      "--compose-file", "-", "shop"]
        assert yaml.safe_load(runner.inputs[0]) == payload

    def test_deploy_failure(self):
        runner = FakeRunner(failures=[("docker", "stack", "deploy")])
        with pytest.raises(StackError):
            DockerStackRuntime(runner).deploy("shop", {})

    def test_extract_file_removes_container(self):
        runner = FakeRunner(failures=[("docker", "cp")])
        with pytest.raises(StackError, match="not found in image"):
            DockerStackRuntime(runner).extract_file("shop:1.0", "/app/wso.yml", "/tmp/out.yml")
        assert runner.commands[-1][:3] == ["docker", "rm", "-f"]
        assert runner.commands[-1][3] == runner.commands[0][3]

    def test_pull_failure(self):
        runner = FakeRunner(failures=[("docker", "pull")])
        with pytest.raises(StackError, match="pull"):
            DockerStackRuntime(runner).pull_image("shop:1.0")

    def test_wait_for_stack_ready(self):
        states = iter(["0/1\n", "0/1\n", "1/1\n"])
        runner = FakeRunner({("docker", "stack", "services"): lambda: next(states)})
        runtime = DockerStackRuntime(runner, ready_interval=0.01)
        assert runtime.wait_for_stack("shop", timeout=5) is True
        assert len(runner.commands) == 3

    def test_wait_for_stack_timeout(self):
        runner = FakeRunner({("docker", "stack", "services"): "0/1\n"})
        runtime = DockerStackRuntime(runner, ready_interval=0.01)
        assert runtime.wait_for_stack("shop", timeout=0.1) is False

    def test_wait_for_stack_survives_command_errors(self):
        runner = FakeRunner(failures=[("docker", "stack", "services")])
        runtime = DockerStackRuntime(runner, ready_interval=0.01)
        assert runtime.wait_for_stack("shop", timeout=0.1) is False


class TestDockerProxyController:
    """Tests for DockerProxyController."""

    def test_validate_and_reload(self):
        runner = FakeRunner({("docker", "ps"): "abc123\n"})
        proxy = DockerProxyController(runner)
        proxy.validate_config()
        proxy.reload()
        assert ["docker", "ps", "-q", "-f", "name=system_nginx"] in runner.commands
        assert ["docker", "exec", "abc123", "nginx", "-t"] in runner.commands
        assert ["docker", "exec", "abc123", "nginx", "-s", "reload"] in runner.commands

    def test_container_not_found(self):
        proxy = DockerProxyController(FakeRunner({("docker", "ps"): ""}))
        with pytest.raises(ProxyError, match="not found"):
            proxy.validate_config()

    def test_invalid_config(self):
        runner = FakeRunner({("docker", "ps"): "abc123\n"}, failures=[("docker", "exec")])
        with pytest.raises(ProxyError, match="syntax test failed"):
            DockerProxyController(runner).validate_config()


class TestCertbotIssuer:
    """Tests for CertbotIssuer."""

    def make_issuer(self, tmp_path, runner, email=None):
        return CertbotIssuer(runner,
                             letsencrypt_dir=tmp_path / "le",
                             letsencrypt_lib_dir=tmp_path / "le-lib",
                             acme_webroot=tmp_path / "acme",
                             credentials_dir=tmp_path / "certbot",
                             email=email)

    def test_issue_webroot(self, tmp_path):
        runner = FakeRunner()
        self.make_issuer(tmp_path, runner).issue_webroot(["a.com", "www.a.com"])
        command = runner.commands[0]
        assert "certbot/certbot" in command
        assert command[command.index("certonly"):command.index("certonly") + 2] == ["certonly", "--webroot"]
        assert "--register-unsafely-without-email" in command
        assert command[-4:] == ["-d", "a.com", "-d", "www.a.com"]

    def test_issue_dns_requires_credentials(self, tmp_path):
        issuer = self.make_issuer(tmp_path, FakeRunner(), email="ops@a.com")
        with pytest.raises(CertificateError, match="credentials"):
            issuer.issue_dns(["*.a.com"])

        path = issuer.write_ovh_credentials("ovh-eu", "key", "secret", "consumer")
        assert stat.S_IMODE(os.stat(path).st_mode) == 0o600
        assert "dns_ovh_endpoint = ovh-eu" in path.read_text()

        issuer.issue_dns(["*.a.com", "a.com"])
        command = issuer.runner.commands[0]
        assert "certbot/dns-ovh" in command
        assert ["--email", "ops@a.com"] == command[command.index("--email"):command.index("--email") + 2]

    def test_invalid_endpoint(self, tmp_path):
        with pytest.raises(CertificateError):
            self.make_issuer(tmp_path, FakeRunner()).write_ovh_credentials("ovh-us", "k", "s", "c")

    def test_no_domains(self, tmp_path):
        with pytest.raises(CertificateError):
            self.make_issuer(tmp_path, FakeRunner()).issue_webroot([" "])

    def test_failure(self, tmp_path):
        runner = FakeRunner(failures=[("docker", "run")])
        with pytest.raises(CertificateError, match="renew"):
            self.make_issuer(tmp_path, runner).renew()
