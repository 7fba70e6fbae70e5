"""JSON file persistence with portalocker-guarded access.

Every piece of collective state (experiments, metrics snapshots, handoff
contracts, routing decisions, TaskMaster scaffolding) is plain JSON on disk.
Hooks run as concurrent short-lived processes, so reads take a shared lock,
writes take an exclusive lock, and read-modify-write appends go through a
separate ``.lock`` file.

Key Components:
    - read_json: Shared-lock read with an optional default
    - write_json: Exclusive write through a temp file and atomic rename
    - append_json_array: Locked read-append-write on a JSON array file
    - append_json_line: Locked append of one JSON Lines record
    - unique_path: Timestamped file names that never collide

Example:
    >>> from collective.core.storage import append_json_array, read_json
    >>> append_json_array(Path("routing/routing-decisions.json"), {"to": "@testing-agent"})
    >>> read_json(Path("routing/routing-decisions.json"), default=[])
    [{'to': '@testing-agent'}]
"""

from __future__ import annotations

import json
import logging
import os
import time
from pathlib import Path
from typing import Any

import portalocker

from collective.core.exceptions import StorageError

logger = logging.getLogger(__name__)

LOCK_TIMEOUT = 10

# Non-blocking flags make portalocker retry until LOCK_TIMEOUT expires.
SHARED_LOCK = portalocker.LOCK_SH | portalocker.LOCK_NB
EXCLUSIVE_LOCK = portalocker.LOCK_EX | portalocker.LOCK_NB

_MISSING = object()


def read_json(path: Path, default: Any = _MISSING, tolerant: bool = False) -> Any:
    """Read a JSON file under a shared lock.

    Args:
        path: File to read.
        default: Returned when the file does not exist. When omitted a
            missing file raises StorageError.
        tolerant: When True (and a default is given) corrupt JSON also
            returns the default instead of raising.

    Returns:
        The decoded JSON value.

    Raises:
        StorageError: If the file is missing without a default, cannot be
            locked, or holds invalid JSON.
    """
    path = Path(path)
    if not path.exists():
        if default is _MISSING:
            raise StorageError(f"File not found: {path}", path=str(path))
        return default

    try:
        with portalocker.Lock(
            path, mode="r", timeout=LOCK_TIMEOUT, flags=SHARED_LOCK
        ) as f:
            return json.load(f)
    except portalocker.LockException as e:
        raise StorageError(f"Failed to acquire lock for {path}: {e}", path=str(path))
    except json.JSONDecodeError as e:
        if tolerant and default is not _MISSING:
            logger.warning("Ignoring corrupt JSON file %s: %s", path, e)
            return default
        raise StorageError(f"Corrupted JSON file {path}: {e}", path=str(path))


def write_json(path: Path, data: Any, indent: int = 2) -> None:
    """Write a JSON file atomically under an exclusive lock.

    The payload is written to a sibling ``.tmp`` file and renamed over the
    target so readers never observe a half-written document.

    Raises:
        StorageError: If the lock cannot be acquired or the write fails.
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    lock_path = path.with_name(path.name + ".lock")
    temp_path = path.with_name(path.name + ".tmp")

    try:
        with portalocker.Lock(
            lock_path, mode="w", timeout=LOCK_TIMEOUT, flags=EXCLUSIVE_LOCK
        ):
            with open(temp_path, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=indent)
            # Rename is atomic on POSIX systems
            os.replace(temp_path, path)
    except portalocker.LockException as e:
        raise StorageError(f"Failed to acquire lock for {path}: {e}", path=str(path))
    except (OSError, TypeError, ValueError) as e:
        raise StorageError(f"Failed to write {path}: {e}", path=str(path))


def append_json_array(path: Path, entry: Any) -> int:
    """Append an entry to a file holding a JSON array.

    A missing or corrupt file starts a fresh array, mirroring how the
    shell hooks re-initialise their logs with ``echo "[]"``.

    Returns:
        The array length after the append.

    Raises:
        StorageError: If the lock cannot be acquired or the write fails.
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    lock_path = path.with_name(path.name + ".lock")
    temp_path = path.with_name(path.name + ".tmp")

    try:
        with portalocker.Lock(
            lock_path, mode="w", timeout=LOCK_TIMEOUT, flags=EXCLUSIVE_LOCK
        ):
            data: list[Any] = []
            if path.exists():
                try:
                    with open(path, "r", encoding="utf-8") as f:
                        loaded = json.load(f)
                    if isinstance(loaded, list):
                        data = loaded
                    else:
                        logger.warning("%s does not hold a JSON array, starting over", path)
                except json.JSONDecodeError as e:
                    logger.warning("Corrupt JSON array in %s, starting over: %s", path, e)

            data.append(entry)

            with open(temp_path, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2)
            os.replace(temp_path, path)
            return len(data)
    except portalocker.LockException as e:
        raise StorageError(f"Failed to acquire lock for {path}: {e}", path=str(path))
    except (OSError, TypeError, ValueError) as e:
        raise StorageError(f"Failed to append to {path}: {e}", path=str(path))


def append_json_line(path: Path, entry: Any) -> None:
    """Append a single JSON Lines record under an exclusive lock."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)

    try:
        with portalocker.Lock(
            path, mode="a", timeout=LOCK_TIMEOUT, flags=EXCLUSIVE_LOCK
        ) as f:
            f.write(json.dumps(entry, separators=(",", ":")) + "\n")
    except portalocker.LockException as e:
        raise StorageError(f"Failed to acquire lock for {path}: {e}", path=str(path))
    except (OSError, TypeError, ValueError) as e:
        raise StorageError(f"Failed to append to {path}: {e}", path=str(path))


def unique_path(directory: Path, prefix: str, suffix: str = ".json") -> Path:
    """Return ``<prefix>-<epoch-ms><suffix>`` in ``directory``, adding a counter on collision."""
    directory = Path(directory)
    stamp = int(time.time() * 1000)
    path = directory / f"{prefix}-{stamp}{suffix}"
    counter = 1
    while path.exists():
        path = directory / f"{prefix}-{stamp}-{counter}{suffix}"
        counter += 1
    return path


def read_json_lines(path: Path) -> list[Any]:
    """Read every record of a JSON Lines file, skipping corrupt lines."""
    path = Path(path)
    if not path.exists():
        return []

    records = []
    try:
        with portalocker.Lock(
            path, mode="r", timeout=LOCK_TIMEOUT, flags=SHARED_LOCK
        ) as f:
            for line_number, line in enumerate(f, start=1):
                line = line.strip()
                if not line:
                    continue
                try:
                    records.append(json.loads(line))
                except json.JSONDecodeError:
                    logger.warning("Skipping corrupt line %d in %s", line_number, path)
    except portalocker.LockException as e:
        raise StorageError(f"Failed to acquire lock for {path}: {e}", path=str(path))
    return records


__all__ = [
    "LOCK_TIMEOUT",
    "read_json",
    "write_json",
    "append_json_array",
    "append_json_line",
    "read_json_lines",
    "unique_path",
]
