"""Tests for the bounded pool of child processes."""
import sys

import pytest

from xargs import ProcessPool, XargsError

SLEEP = ["-c", "import time, sys; time.sleep(float(sys.argv[1]))"]


class FailingChild:
    """Stands in for a Popen whose wait() fails at the OS level."""

    def __init__(self, message="no child"):
        self.message = message
        self.waited = False

    def wait(self):
        self.waited = True
        raise ChildProcessError(self.message)


class Child:
    def __init__(self):
        self.waited = False

    def wait(self):
        self.waited = True
        return 0


def test_full_pool_waits_before_starting_next():
    pool = ProcessPool(1, sys.executable, SLEEP)
    pool.submit([b"0.3"])
    first = pool.children[0]
    assert first.poll() is None

    pool.submit([b"0"])
    assert first.returncode is not None
    assert len(pool) == 1

    pool.wait_all()
    assert len(pool) == 0


def test_live_children_never_exceed_max_procs():
    pool = ProcessPool(2, sys.executable, SLEEP)
    for _ in range(5):
        pool.submit([b"0.05"])
        assert len(pool) <= 2
    pool.wait_all()
    assert len(pool) == 0


def test_children_run_in_parallel_up_to_max_procs():
    pool = ProcessPool(3, sys.executable, SLEEP)
    for _ in range(3):
        pool.submit([b"0.2"])
    assert len(pool) == 3
    pool.wait_all()


def test_child_failure_is_not_an_error():
    pool = ProcessPool(1, sys.executable, ["-c", "raise SystemExit(3)"])
    pool.submit([])
    pool.submit([])
    pool.wait_all()


def test_launch_failure():
    pool = ProcessPool(1, "/nonexistent/xargs-test-utility")
    with pytest.raises(XargsError, match="cannot start child process"):
        pool.submit([b"a"])
    assert len(pool) == 0


def test_failed_wait_for_capacity_launches_nothing():
    pool = ProcessPool(1, sys.executable, SLEEP)
    failing = FailingChild()
    pool.children.append(failing)
    with pytest.raises(XargsError, match="waiting for child process failed"):
        pool.submit([b"0"])
    assert failing.waited
    assert len(pool) == 0


def test_wait_all_waits_on_every_child_and_reports_first_failure():
    pool = ProcessPool(3, "true")
    children = [FailingChild("first"), Child(), FailingChild("second")]
    pool.children.extend(children)
    with pytest.raises(XargsError) as excinfo:
        pool.wait_all()
    assert "first" in str(excinfo.value)
    assert all(child.waited for child in children)
    assert len(pool) == 0


def test_close_drains_the_pool():
    with ProcessPool(2, sys.executable, SLEEP) as pool:
        pool.submit([b"0.05"])
        pool.submit([b"0.05"])
        children = list(pool.children)
    assert len(pool) == 0
    assert all(child.returncode is not None for child in children)


def test_close_failure_is_fatal(capsys):
    pool = ProcessPool(1, "true")
    pool.children.append(FailingChild())
    with pytest.raises(SystemExit) as excinfo:
        pool.close()
    assert excinfo.value.code == 1
    assert "xargs: waiting for child process failed" in capsys.readouterr().err
    assert len(pool) == 0


def test_trace_prints_command(capfd):
    pool = ProcessPool(1, sys.executable, ["-c", "pass"], trace=True)
    pool.submit([b"two words", b"x"])
    pool.wait_all()
    err = capfd.readouterr().err
    assert err.startswith("exec: ")
    assert "'two words' x" in err


def test_invalid_max_procs():
    with pytest.raises(ValueError):
        ProcessPool(0, "true")


def test_children_read_empty_stdin(capfd):
    pool = ProcessPool(1, sys.executable, ["-c", "import sys; print(repr(sys.stdin.read()))"])
    pool.submit([])
    pool.wait_all()
    assert capfd.readouterr().out == "''\n"


def test_running_children_are_drained_when_submit_fails():
    with pytest.raises(XargsError, match="cannot start child process"):
        with ProcessPool(2, sys.executable, SLEEP) as pool:
            pool.submit([b"0.2"])
            started = pool.children[0]
            pool.cmd = "/nonexistent/xargs-test-utility"
            pool.submit([b"0"])
    assert started.returncode is not None
    assert len(pool) == 0
