"""
File-backed model persistence.

Each model is one JSON snapshot in the store directory. Disk I/O runs in a
worker thread so the event loop never blocks on it.
"""

import asyncio
import logging
import os
import re
import tempfile
from pathlib import Path
from typing import List, Optional, Union

from .model import TemplateModel
from .snapshot import ModelSnapshot, SnapshotError

logger = logging.getLogger(__name__)

SNAPSHOT_SUFFIX = ".json"
_NAME_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9 _.-]{0,127}$")


class PersistenceError(RuntimeError):
    """Raised when a model cannot be saved or loaded."""


def check_model_name(name: str) -> str:
    """
    Validate a model name for use as a file name.

    Raises:
        PersistenceError: If the name is empty, too long or contains path
            separators or other unsafe characters
    """
    if not isinstance(name, str) or not _NAME_PATTERN.match(name) or name.endswith("."):
        raise PersistenceError(f"Invalid model name: {name!r}")
    return name


class ModelStore:
    """
    Directory of model snapshots.

    Methods are coroutines; the blocking file work happens in
    `asyncio.to_thread`.
    """

    def __init__(self, directory: Union[str, Path]):
        self.directory = Path(directory)

    def _path(self, name: str) -> Path:
        return self.directory / f"{check_model_name(name)}{SNAPSHOT_SUFFIX}"

    async def save(self, name: str, model: Union[TemplateModel, ModelSnapshot]) -> None:
        """
        Write a model (or a snapshot already taken from one) under `name`.

        Raises:
            PersistenceError: On invalid name or I/O failure
        """
        snapshot = model.to_snapshot() if isinstance(model, TemplateModel) else model
        path = self._path(name)
        await asyncio.to_thread(self._write, path, snapshot.to_json())
        logger.info(f"Saved model {name!r} ({len(snapshot.labels)} labels)")

    async def load(self, name: str) -> Optional[TemplateModel]:
        """
        Read a model.

        Returns:
            The model, or None if no snapshot exists under `name`

        Raises:
            PersistenceError: On invalid name, I/O failure or a corrupt snapshot
        """
        path = self._path(name)
        data = await asyncio.to_thread(self._read, path)
        if data is None:
            return None
        try:
            snapshot = ModelSnapshot.from_json(data)
        except SnapshotError as e:
            raise PersistenceError(f"Corrupt snapshot for model {name!r}: {e}") from e
        return TemplateModel.from_snapshot(snapshot)

    async def list_names(self) -> List[str]:
        """Names of all stored models, sorted."""
        return await asyncio.to_thread(self._list)

    async def exists(self, name: str) -> bool:
        path = self._path(name)
        return await asyncio.to_thread(path.exists)

    # ------------------------------------------------------------------
    # Blocking helpers (worker thread)
    # ------------------------------------------------------------------

    def _write(self, path: Path, data: str) -> None:
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(dir=self.directory, prefix=".tmp-", suffix=SNAPSHOT_SUFFIX)
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    f.write(data)
                os.replace(tmp_path, path)
            except BaseException:
                if os.path.exists(tmp_path):
                    os.unlink(tmp_path)
                raise
        except OSError as e:
            raise PersistenceError(f"Failed to write {path}: {e}") from e

    def _read(self, path: Path) -> Optional[str]:
        try:
            return path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError as e:
            raise PersistenceError(f"Failed to read {path}: {e}") from e

    def _list(self) -> List[str]:
        if not self.directory.is_dir():
            return []
        try:
            return sorted(
                p.name[: -len(SNAPSHOT_SUFFIX)]
                for p in self.directory.iterdir()
                if p.is_file() and p.name.endswith(SNAPSHOT_SUFFIX) and not p.name.startswith(".")
            )
        except OSError as e:
            raise PersistenceError(f"Failed to list {self.directory}: {e}") from e
