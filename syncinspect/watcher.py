"""Polling watcher that reports changes to files and directories."""

from __future__ import annotations

import enum
import os
import queue
import stat
import threading
from dataclasses import dataclass


class Op(enum.IntFlag):
    """Kind of file operation an event reports."""

    CREATE = 1
    REMOVE = 2
    MODIFY = 4
    RENAME = 8
    CHMOD = 16
    MOVE = 32

    def __str__(self) -> str:
        return "|".join(op.name for op in type(self) if self & op == op)


@dataclass(frozen=True)
class Event:
    """A single file operation seen by the watcher."""

    path: str
    op: Op
    file_info: os.stat_result

    def is_dir_event(self) -> bool:
        """Return whether the event concerns a directory."""
        return stat.S_ISDIR(self.file_info.st_mode)

    def has_ops(self, *args: Op) -> bool:
        """Return whether the event carries any of the given operations."""
        return any(self.op & op for op in args)


class WatcherStartedError(RuntimeError):
    """The watcher is already running."""

    def __init__(self) -> None:
        super().__init__("watcher already started")


class WatcherClosedError(RuntimeError):
    """The watcher has been closed."""

    def __init__(self) -> None:
        super().__init__("watcher already closed")


def _list_for_name(name: str) -> dict[str, os.stat_result]:
    """Return stat results for ``name`` and, if a directory, its entries."""
    info = os.stat(name)
    listing = {name: info}
    if not stat.S_ISDIR(info.st_mode):
        return listing
    with os.scandir(name) as entries:
        for entry in entries:
            path = os.path.join(name, entry.name)
            try:
                listing[path] = os.lstat(path)
            except FileNotFoundError:
                continue
    return listing


class Watcher:
    """Watches files and directories (non-recursively) by polling.

    Events are put on ``events`` and listing errors on ``errors``. When one
    file sees several operations in one interval only one event is sent,
    with priority Modify, Chmod, Rename/Move, Create/Remove.
    """

    def __init__(self) -> None:
        self.events: queue.Queue[Event] = queue.Queue()
        self.errors: queue.Queue[OSError] = queue.Queue()
        self._state_lock = threading.Lock()
        self._running = False
        self._closed = threading.Event()
        self._thread: threading.Thread | None = None
        self._mu = threading.Lock()
        self._names: dict[str, None] = {}
        self._files: dict[str, os.stat_result] = {}

    def __enter__(self) -> Watcher:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def start(self, interval: float) -> None:
        """Start polling every ``interval`` seconds."""
        with self._state_lock:
            if self._running:
                raise WatcherStartedError()
            self._running = True
            if self._closed.is_set():
                raise WatcherClosedError()
            self._thread = threading.Thread(
                target=self._watch, args=(interval,), daemon=True
            )
            self._thread.start()

    def close(self) -> None:
        """Stop polling and forget every watched name."""
        with self._state_lock:
            if not self._running:
                return
            self._running = False
            self._closed.set()
            thread, self._thread = self._thread, None
        if thread is not None:
            thread.join()
        with self._mu:
            self._names = {}
            self._files = {}

    def add(self, name: str) -> None:
        """Add a file or directory to the watching list."""
        with self._mu:
            if self._closed.is_set():
                raise WatcherClosedError()
            listing = _list_for_name(name)
            self._names[name] = None
            self._files.update(listing)

    def remove(self, name: str) -> None:
        """Remove a file or directory from the watching list."""
        with self._mu:
            if self._closed.is_set():
                raise WatcherClosedError()
            self._do_remove(name)

    def _do_remove(self, name: str) -> None:
        self._names.pop(name, None)
        info = self._files.pop(name, None)
        if info is None or not stat.S_ISDIR(info.st_mode):
            return
        for path in [p for p in self._files if os.path.dirname(p) == name]:
            del self._files[path]

    def _watch(self, interval: float) -> None:
        while not self._closed.wait(interval):
            current = self._list_for_all()
            if current is None:
                return
            self._poll_events(current)
            with self._mu:
                self._files = current

    def _emit(self, event: Event) -> bool:
        if self._closed.is_set():
            return False
        self.events.put(event)
        return True

    def _poll_events(self, current: dict[str, os.stat_result]) -> None:
        with self._mu:
            removes = {p: i for p, i in self._files.items() if p not in current}
            creates: dict[str, os.stat_result] = {}

            for path, cur in current.items():
                latest = self._files.get(path)
                if latest is None:
                    creates[path] = cur
                    continue
                # Modification time may only have second precision; size helps.
                if latest.st_mtime_ns != cur.st_mtime_ns or latest.st_size != cur.st_size:
                    if not self._emit(Event(path, Op.MODIFY, cur)):
                        return
                if latest.st_mode != cur.st_mode:
                    if not self._emit(Event(path, Op.CHMOD, cur)):
                        return

            for removed_path, removed_info in list(removes.items()):
                for created_path, created_info in list(creates.items()):
                    if not os.path.samestat(removed_info, created_info):
                        continue
                    same_dir = os.path.dirname(removed_path) == os.path.dirname(
                        created_path
                    )
                    op = Op.RENAME if same_dir else Op.MOVE
                    del removes[removed_path]
                    del creates[created_path]
                    if not self._emit(Event(removed_path, op, removed_info)):
                        return
                    break

            for path, info in creates.items():
                if not self._emit(Event(path, Op.CREATE, info)):
                    return
            for path, info in removes.items():
                if not self._emit(Event(path, Op.REMOVE, info)):
                    return

    def _list_for_all(self) -> dict[str, os.stat_result] | None:
        with self._mu:
            listing: dict[str, os.stat_result] = {}
            for name in list(self._names):
                try:
                    listing.update(_list_for_name(name))
                except OSError as err:
                    if isinstance(err, FileNotFoundError):
                        self._do_remove(name)
                    if self._closed.is_set():
                        return None
                    self.errors.put(err)
            return listing