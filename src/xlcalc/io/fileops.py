"""Workbook file safety: sidecar locks, atomic replacement, backups, fingerprints."""

from __future__ import annotations

import hashlib
import os
import shutil
import tempfile
from datetime import datetime, timezone
from pathlib import Path
from typing import IO, Any

import portalocker

LOCK_SUFFIX = ".xlcalc.lock"
TEMP_PREFIX = ".xlcalc_tmp_"


def fingerprint(path: str | Path) -> str:
    """``sha256:<hex>`` of a file's bytes."""
    digest = hashlib.sha256()
    with open(path, "rb") as f:
        for block in iter(lambda: f.read(65536), b""):
            digest.update(block)
    return f"sha256:{digest.hexdigest()}"


def backup(path: str | Path) -> str:
    """Copy ``path`` to ``<stem>.<UTC timestamp>.bak<suffix>`` beside it. Returns the copy's path."""
    source = Path(path)
    stamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%S%fZ")
    copy = source.with_name(f"{source.stem}.{stamp}.bak{source.suffix}")
    shutil.copy2(source, copy)
    return str(copy)


def atomic_write(target: str | Path, data: bytes) -> None:
    """Replace ``target`` with ``data`` through a temp file in the same directory."""
    target = Path(target)
    tmp = tempfile.NamedTemporaryFile(
        dir=target.parent, prefix=TEMP_PREFIX, suffix=target.suffix, delete=False
    )
    try:
        with tmp:
            tmp.write(data)
            tmp.flush()
            os.fsync(tmp.fileno())
        os.replace(tmp.name, target)
    except Exception:
        Path(tmp.name).unlink(missing_ok=True)
        raise


class WorkbookLock:
    """Exclusive lock on ``<workbook>.xlcalc.lock``, held while a save is written.

    With ``timeout=0`` a held lock fails at once; a positive timeout polls
    until it runs out. Either way the failure is a
    :class:`portalocker.LockException`. The sidecar stays on disk after
    release and records the pid and time of the last holder.
    """

    def __init__(self, workbook_path: str | Path, *, timeout: float = 0) -> None:
        self.workbook_path = Path(workbook_path).resolve()
        self.lock_path = self.workbook_path.with_name(self.workbook_path.name + LOCK_SUFFIX)
        self._lock = portalocker.Lock(
            str(self.lock_path),
            mode="a+",
            timeout=timeout if timeout > 0 else None,
            check_interval=min(0.1, max(0.01, timeout / 20)),
            fail_when_locked=timeout <= 0,
            flags=portalocker.LOCK_EX | portalocker.LOCK_NB,
        )

    def __enter__(self) -> "WorkbookLock":
        handle: IO[Any] = self._lock.acquire()
        handle.seek(0)
        handle.truncate()
        handle.write(f"pid={os.getpid()}\ntime={datetime.now(timezone.utc).isoformat()}\n")
        handle.flush()
        return self

    def __exit__(self, *exc: object) -> None:
        self._lock.release()


def read_text_safe(path: str | Path) -> str:
    """Read a UTF-8 text file, dropping a leading BOM if present."""
    return Path(path).read_text(encoding="utf-8-sig")
