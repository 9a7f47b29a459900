import os
import queue
import time

import pytest

from syncinspect.watcher import (
    Event,
    Op,
    Watcher,
    WatcherClosedError,
    WatcherStartedError,
)


def _next_file_event(w: Watcher, timeout: float = 5.0) -> Event:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        try:
            err = w.errors.get_nowait()
        except queue.Empty:
            pass
        else:
            pytest.fail(f"watcher error: {err}")
        try:
            ev = w.events.get(timeout=0.05)
        except queue.Empty:
            continue
        if ev.is_dir_event():
            continue
        return ev
    pytest.fail("no event received")


def _assert_event(w: Watcher, path: str, op: Op) -> None:
    ev = _next_file_event(w)
    assert ev.has_ops(op)
    assert ev.path == path


def test_watcher(tmp_path):
    old_name = "mysql-bin.000001"
    new_name = "mysql-bin.000002"
    watch_dir = tmp_path / "watch1"
    watch_dir.mkdir()
    directory = str(watch_dir)
    old_path = os.path.join(directory, old_name)
    new_path = os.path.join(directory, new_name)

    w = Watcher()
    w.add(directory)
    w.start(0.01)
    try:
        open(old_path, "w").close()
        _assert_event(w, old_path, Op.CREATE)

        fd = os.open(old_path, os.O_WRONLY)
        os.write(fd, b"meaningless content")
        os.close(fd)
        _assert_event(w, old_path, Op.MODIFY)

        os.chmod(old_path, 0o777)
        _assert_event(w, old_path, Op.CHMOD)

        os.rename(old_path, new_path)
        _assert_event(w, old_path, Op.RENAME)

        os.remove(new_path)
        _assert_event(w, new_path, Op.REMOVE)

        open(old_path, "w").close()
        _assert_event(w, old_path, Op.CREATE)

        other = tmp_path / "watch2"
        other.mkdir()
        other_dir = str(other)
        old_path2 = os.path.join(other_dir, old_name)
        w.add(other_dir)

        os.rename(old_path, old_path2)
        _assert_event(w, old_path, Op.MOVE)
    finally:
        w.close()


def test_op_str():
    assert str(Op.CREATE) == "CREATE"
    assert str(Op.CREATE | Op.MODIFY) == "CREATE|MODIFY"
    assert str(Op.MOVE | Op.REMOVE | Op.CHMOD) == "REMOVE|CHMOD|MOVE"
    assert str(Op(0)) == ""


def test_event_has_ops_and_dir(tmp_path):
    info = os.stat(tmp_path)
    ev = Event(str(tmp_path), Op.RENAME, info)
    assert ev.is_dir_event() is True
    assert ev.has_ops(Op.CREATE, Op.RENAME) is True
    assert ev.has_ops(Op.CREATE, Op.REMOVE) is False
    assert ev.has_ops() is False

    f = tmp_path / "f"
    f.write_text("x")
    file_ev = Event(str(f), Op.CREATE, os.stat(f))
    assert file_ev.is_dir_event() is False


def test_start_twice_raises(tmp_path):
    w = Watcher()
    w.start(0.01)
    try:
        with pytest.raises(WatcherStartedError):
            w.start(0.01)
    finally:
        w.close()


def test_closed_watcher_rejects_operations(tmp_path):
    w = Watcher()
    w.start(0.01)
    w.close()
    with pytest.raises(WatcherClosedError):
        w.add(str(tmp_path))
    with pytest.raises(WatcherClosedError):
        w.remove(str(tmp_path))
    with pytest.raises(WatcherClosedError):
        w.start(0.01)


def test_add_missing_path_raises(tmp_path):
    w = Watcher()
    with pytest.raises(FileNotFoundError):
        w.add(str(tmp_path / "missing"))


def test_removed_directory_sends_no_events(tmp_path):
    watch_dir = tmp_path / "d"
    watch_dir.mkdir()
    w = Watcher()
    w.add(str(watch_dir))
    w.remove(str(watch_dir))
    w.start(0.01)
    try:
        (watch_dir / "file").write_text("data")
        time.sleep(0.2)
        assert w.events.empty()
    finally:
        w.close()