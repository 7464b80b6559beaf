import os
import stat
from wso.MANAGERS.crontab_manager import CrontabManager


def test_install(tmp_path):
    manager = CrontabManager(tmp_path / "cron.d")
    assert manager.install("shop", "@daily root true\n") is True
    path = tmp_path / "cron.d" / "wso-shop"
    assert path.read_text() == "@daily root true\n"
    assert stat.S_IMODE(os.stat(path).st_mode) == 0o644


def test_install_unchanged(tmp_path):
    manager = CrontabManager(tmp_path)
    manager.install("shop", "@daily root true\n")
    assert manager.install("shop", "@daily root true\n") is False
    assert manager.install("shop", "@hourly root true\n") is True


def test_remove(tmp_path):
    manager = CrontabManager(tmp_path)
    manager.install("shop", "@daily root true\n")
    assert manager.remove("shop") is True
    assert manager.remove("shop") is False
    assert not manager.path_for("shop").exists()
