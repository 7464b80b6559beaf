import pytest
from wso.MANAGERS.config_updater import SafeConfigUpdater, UpdateState
from wso.UTILS.file_ops import file_checksum
from wso.errors import ConfigUpdateError
from conftest import FakeProxy

F1 = "server { listen 80; server_name a.com; }\n"
F2 = "server { listen 80; server_name b.com; }\n"


@pytest.fixture
def conf_dir(tmp_path):
    path = tmp_path / "nginx"
    path.mkdir()
    return path


def make_updater(conf_dir, proxy):
    return SafeConfigUpdater(conf_dir, proxy, lock_dir=conf_dir.parent / "locks", lock_timeout=1)


class TestSafeConfigUpdater:
    """Tests for SafeConfigUpdater."""

    def test_first_install(self, conf_dir):
        proxy = FakeProxy()
        state = make_updater(conf_dir, proxy).apply("shop", F1)
        assert state == UpdateState.APPLIED
        assert (conf_dir / "shop.conf").read_text() == F1
        assert proxy.events == ['validate', 'reload']
        assert not (conf_dir / "shop.conf.backup").exists()

    def test_unchanged_short_circuit(self, conf_dir):
        proxy = FakeProxy()
        updater = make_updater(conf_dir, proxy)
        updater.apply("shop", F1)
        proxy.events.clear()

        assert updater.apply("shop", F1) == UpdateState.UNCHANGED
        assert proxy.count('validate') == 0
        assert proxy.count('reload') == 0

    def test_update_removes_backup(self, conf_dir):
        (conf_dir / "shop.conf").write_text(F1)
        state = make_updater(conf_dir, FakeProxy()).apply("shop", F2)
        assert state == UpdateState.APPLIED
        assert (conf_dir / "shop.conf").read_text() == F2
        assert not (conf_dir / "shop.conf.backup").exists()

    def test_rollback_restores_previous_fragment(self, conf_dir):
        target = conf_dir / "shop.conf"
        target.write_text(F1)
        before = file_checksum(target)

        proxy = FakeProxy(fail_validate=True)
        state = make_updater(conf_dir, proxy).apply("shop", F2)

        assert state == UpdateState.FAILED
        assert file_checksum(target) == before
        assert not (conf_dir / "shop.conf.backup").exists()
        assert proxy.count('reload') == 0

    def test_rollback_without_previous_fragment(self, conf_dir):
        state = make_updater(conf_dir, FakeProxy(fail_validate=True)).apply("shop", F1)
        assert state == UpdateState.FAILED
        assert list(conf_dir.iterdir()) == []

    def test_reload_failure_rolls_back(self, conf_dir):
        target = conf_dir / "shop.conf"
        target.write_text(F1)
        state = make_updater(conf_dir, FakeProxy(fail_reload=True)).apply("shop", F2)
        assert state == UpdateState.FAILED
        assert target.read_text() == F1

    @pytest.mark.parametrize("error", [KeyboardInterrupt, RuntimeError])
    def test_interrupted_validation_rolls_back(self, conf_dir, error):
        target = conf_dir / "shop.conf"
        target.write_text(F1)

        class InterruptedProxy(FakeProxy):
            def validate_config(self):
                raise error("nginx -t interrupted")

        with pytest.raises(error):
            make_updater(conf_dir, InterruptedProxy()).apply("shop", F2)
        assert target.read_text() == F1
        assert sorted(p.name for p in conf_dir.iterdir()) == ["shop.conf"]

    def test_interrupted_first_install_leaves_nothing(self, conf_dir):
        class InterruptedProxy(FakeProxy):
            def reload(self):
                raise KeyboardInterrupt

        with pytest.raises(KeyboardInterrupt):
            make_updater(conf_dir, InterruptedProxy()).apply("shop", F1)
        assert list(conf_dir.iterdir()) == []

    def test_other_services_untouched(self, conf_dir):
        (conf_dir / "blog.conf").write_text(F1)
        make_updater(conf_dir, FakeProxy(fail_validate=True)).apply("shop", F2)
        assert (conf_dir / "blog.conf").read_text() == F1

    def test_missing_directory(self, tmp_path):
        updater = make_updater(tmp_path / "missing", FakeProxy())
        with pytest.raises(ConfigUpdateError):
            updater.apply("shop", F1)

    @pytest.mark.parametrize("name", ["../shop", "shop.conf", "", "a/b"])
    def test_invalid_service_name(self, conf_dir, name):
        with pytest.raises(ConfigUpdateError):
            make_updater(conf_dir, FakeProxy()).apply(name, F1)
