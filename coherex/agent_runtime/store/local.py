"""Local filesystem snapshot store.

Stores hibernation snapshots as JSON files under the data root with an
optional namespace prefix::

    {data_root}/{prefix}/snapshots/{session_id}/snapshot.json

Uses ``anyio.to_thread.run_sync`` for non-blocking file I/O.  Writes go to a
temporary file in the target directory and are renamed into place, so a
crash mid-write never leaves a truncated snapshot behind.
"""

from __future__ import annotations

import contextlib
import os
import shutil
import tempfile
from functools import partial
from pathlib import Path

from anyio import to_thread

from coherex.agent_runtime.models.session import SessionSnapshot


class LocalSnapshotStore:
    """Local filesystem implementation of the ``SnapshotStore`` protocol."""

    def __init__(self, data_root: str | Path, prefix: str | None = None) -> None:
        base = Path(data_root)
        if prefix:
            base = base / prefix
        self._base = base / "snapshots"

    def _path(self, session_id: str) -> Path:
        return self._base / session_id / "snapshot.json"

    async def write_snapshot(self, session_id: str, snapshot: SessionSnapshot) -> None:
        data = snapshot.model_dump_json(indent=2)
        await to_thread.run_sync(partial(_atomic_write, self._path(session_id), data))

    async def read_snapshot(self, session_id: str) -> SessionSnapshot:
        raw = await to_thread.run_sync(partial(_read_file, self._path(session_id)))
        return SessionSnapshot.model_validate_json(raw)

    async def exists(self, session_id: str) -> bool:
        return await to_thread.run_sync(self._path(session_id).exists)

    async def delete(self, session_id: str) -> None:
        await to_thread.run_sync(partial(_rmtree, self._base / session_id))


# -- Sync helpers (run in thread pool) -----------------------------------------


def _atomic_write(path: Path, data: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_path = tempfile.mkstemp(dir=path.parent, suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(data)
        os.replace(tmp_path, path)
    except BaseException:
        with contextlib.suppress(OSError):
            os.unlink(tmp_path)
        raise


def _read_file(path: Path) -> str:
    return path.read_text(encoding="utf-8")


def _rmtree(path: Path) -> None:
    if path.exists():
        shutil.rmtree(path)
