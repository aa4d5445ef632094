"""Advisory file locks scoped to a directory.

Used for two things: the session lock that keeps two update sessions away
from the same installation, and the key-generation lock that keeps two
packagers from minting divergent keypairs.

Locks are ``flock`` based and therefore tied to the open file description;
they are released automatically if the holding process dies. The lock file
itself is never removed, since unlinking a file another process is waiting
on would let a third process lock a fresh inode.
"""

from __future__ import annotations

import fcntl
import json
import os
import time
from pathlib import Path
from types import TracebackType

from shipwright.errors import LockContention
from shipwright.logging import get_logger

log = get_logger("shipwright.locking")


class FileLock:
    """Exclusive lock on a file path.

    ``acquire(blocking=False)`` fails immediately with ``LockContention``
    when the lock is held elsewhere; ``blocking=True`` waits for it.
    """

    def __init__(self, path: Path, *, blocking: bool = False) -> None:
        self._path = Path(path)
        self._blocking = blocking
        self._fd: int | None = None

    @property
    def path(self) -> Path:
        return self._path

    @property
    def held(self) -> bool:
        return self._fd is not None

    def acquire(self, blocking: bool | None = None) -> None:
        if self._fd is not None:
            raise RuntimeError(f"Lock already held: {self._path}")
        blocking = self._blocking if blocking is None else blocking

        self._path.parent.mkdir(parents=True, exist_ok=True)
        fd = os.open(self._path, os.O_CREAT | os.O_RDWR, 0o644)
        flags = fcntl.LOCK_EX if blocking else fcntl.LOCK_EX | fcntl.LOCK_NB
        try:
            fcntl.flock(fd, flags)
        except BlockingIOError as exc:
            os.close(fd)
            holder = self._read_holder()
            log.warning("lock_contention", path=str(self._path), holder=holder)
            raise LockContention(f"{self._path} is held by another session") from exc
        except OSError:
            os.close(fd)
            raise

        # Record the holder for diagnostics
        os.ftruncate(fd, 0)
        os.write(fd, json.dumps({"pid": os.getpid(), "timestamp": time.time()}).encode())
        self._fd = fd
        log.debug("lock_acquired", path=str(self._path))

    def release(self) -> None:
        if self._fd is None:
            return
        try:
            os.ftruncate(self._fd, 0)
            fcntl.flock(self._fd, fcntl.LOCK_UN)
        finally:
            os.close(self._fd)
            self._fd = None
        log.debug("lock_released", path=str(self._path))

    def _read_holder(self) -> dict[str, object] | None:
        try:
            raw = self._path.read_text(encoding="utf-8")
            data = json.loads(raw) if raw else None
        except (OSError, ValueError):
            return None
        return data if isinstance(data, dict) else None

    def __enter__(self) -> FileLock:
        self.acquire()
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.release()
