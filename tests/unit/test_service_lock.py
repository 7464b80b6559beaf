import pytest
from wso.UTILS.service_lock import ServiceLock
from wso.errors import LockTimeoutError


def test_acquire_and_release(tmp_path):
    lock = ServiceLock(tmp_path / "locks", "shop")
    with lock:
        assert lock.locked
        assert (tmp_path / "locks" / "shop.lock").exists()
    assert not lock.locked


def test_same_service_times_out(tmp_path):
    with ServiceLock(tmp_path, "shop"):
        with pytest.raises(LockTimeoutError):
            ServiceLock(tmp_path, "shop", timeout=0.3, poll_interval=0.05).acquire()


def test_other_services_do_not_contend(tmp_path):
    with ServiceLock(tmp_path, "shop"):
        with ServiceLock(tmp_path, "blog", timeout=0.3) as other:
            assert other.locked


def test_reacquire_after_release(tmp_path):
    with ServiceLock(tmp_path, "shop"):
        pass
    with ServiceLock(tmp_path, "shop", timeout=0.3) as lock:
        assert lock.locked
