"""Read-only SQLite access through scratch copies of locked stores.

Browsers, Screen Time, Messages and Notes keep their databases open (and
locked) while running. Every reader here copies the live file, together with
its ``-wal``/``-shm`` siblings, into the application cache and queries the
copy. The copy is removed on every exit path.
"""

from __future__ import annotations

import errno
import itertools
import logging
import shutil
import sqlite3
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator

from discovery_signals.exceptions import PermissionDeniedError, StoreReadError

logger = logging.getLogger(__name__)

WAL_SUFFIXES = ("-wal", "-shm")

_counter = itertools.count()


def open_read_only(path: Path) -> sqlite3.Connection:
    """Open a read-only connection to the SQLite file at ``path``."""
    try:
        conn = sqlite3.connect(f"file:{path}?mode=ro", uri=True)
        conn.row_factory = sqlite3.Row
        return conn
    except sqlite3.Error as e:
        err = str(e).lower()
        if "authorization denied" in err:
            raise PermissionDeniedError(f"Access denied opening {path}") from e
        raise StoreReadError(f"Failed to open {path}: {e}") from e


def table_columns(conn: sqlite3.Connection, table: str) -> set[str]:
    """Return the column names of ``table`` (empty if it does not exist)."""
    return {str(row[1]) for row in conn.execute(f"PRAGMA table_info({table})").fetchall()}


def _is_permission_error(e: OSError) -> bool:
    return isinstance(e, PermissionError) or e.errno in (errno.EPERM, errno.EACCES)


def _remove_quietly(path: Path) -> None:
    try:
        path.unlink(missing_ok=True)
    except OSError as e:
        logger.debug("Could not remove scratch file %s: %s", path, e)


def _sibling(path: Path, suffix: str) -> Path:
    return path.with_name(path.name + suffix)


@contextmanager
def scratch_copy(
    source: Path,
    cache_dir: Path,
    prefix: str,
    include_wal: bool = True,
) -> Iterator[Path]:
    """Copy ``source`` (plus WAL/SHM) into ``cache_dir`` and yield the copy.

    WAL/SHM copies are best-effort: the main file alone is still a valid
    database, just possibly missing the latest writes.
    """
    cache_dir.mkdir(parents=True, exist_ok=True)
    stamp = int(time.time() * 1000)
    copy_path = cache_dir / f"{prefix}_{stamp}_{next(_counter)}.db"

    try:
        shutil.copyfile(source, copy_path)
    except OSError as e:
        _remove_quietly(copy_path)
        if _is_permission_error(e):
            raise PermissionDeniedError(
                f"Access denied copying {source}. "
                "Enable Full Disk Access for this application if needed."
            ) from e
        raise StoreReadError(f"Failed to copy {source}: {e}") from e
    logger.debug("Copied %s to %s", source, copy_path)

    if include_wal:
        for suffix in WAL_SUFFIXES:
            try:
                shutil.copyfile(_sibling(source, suffix), _sibling(copy_path, suffix))
            except OSError:
                pass

    try:
        yield copy_path
    finally:
        for path in (copy_path, *(_sibling(copy_path, s) for s in WAL_SUFFIXES)):
            _remove_quietly(path)
        logger.debug("Cleaned up scratch copy %s", copy_path)


@contextmanager
def read_only_copy(
    source: Path,
    cache_dir: Path,
    prefix: str,
    include_wal: bool = True,
) -> Iterator[sqlite3.Connection]:
    """Yield a read-only connection on a scratch copy of ``source``."""
    with scratch_copy(source, cache_dir, prefix, include_wal=include_wal) as copy_path:
        conn = open_read_only(copy_path)
        try:
            yield conn
        finally:
            conn.close()
