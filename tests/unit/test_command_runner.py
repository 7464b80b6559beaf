import sys
import pytest
from wso.RUNNERS.command_runner import CommandRunner
from wso.errors import CommandError


def test_run_returns_stdout():
    output = CommandRunner().run([sys.executable, "-c", "print('hello')"])
    assert output == "hello\n"


def test_run_with_input():
    output = CommandRunner().run([sys.executable, "-c", "import sys; print(sys.stdin.read().upper())"],
                                 input="payload")
    assert output.strip() == "PAYLOAD"


def test_non_zero_exit():
    with pytest.raises(CommandError) as exc:
        CommandRunner().run([sys.executable, "-c", "import sys; sys.stderr.write('boom'); sys.exit(3)"])
    assert exc.value.returncode == 3
    assert exc.value.stderr == "boom"


def test_timeout():
    with pytest.raises(CommandError) as exc:
        CommandRunner(timeout=0.5).run([sys.executable, "-c", "import time; time.sleep(5)"])
    assert exc.value.returncode is None
    assert "timed out" in str(exc.value)


def test_missing_binary():
    with pytest.raises(CommandError) as exc:
        CommandRunner().run(["wso-binary-that-does-not-exist-12345"])
    assert exc.value.returncode == 127
