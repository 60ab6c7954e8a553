"""
Small persistent file store rooted at the configured data directory.

Provides exists/read/write/delete plus JSON helpers and pruning of
directories down to an explicit set of file names.
"""

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any, Iterable

logger = logging.getLogger(__name__)


class FileStore:
    """File access rooted at a base directory.

    Relative paths are resolved under ``base_dir``; absolute paths are used
    as given.
    """

    def __init__(self, base_dir: str | Path):
        self.base_dir = Path(base_dir)
        self.base_dir.mkdir(parents=True, exist_ok=True)

    def path(self, name: str | Path) -> Path:
        candidate = Path(name)
        if candidate.is_absolute():
            return candidate
        return self.base_dir / candidate

    def exists(self, name: str | Path) -> bool:
        return self.path(name).is_file()

    def size(self, name: str | Path) -> int:
        return self.path(name).stat().st_size

    def read(self, name: str | Path) -> bytes:
        return self.path(name).read_bytes()

    def write(self, name: str | Path, data: bytes | str) -> Path:
        """Write data atomically (temp file + rename)."""
        target = self.path(name)
        target.parent.mkdir(parents=True, exist_ok=True)
        if isinstance(data, str):
            data = data.encode("utf-8")

        fd, tmp_name = tempfile.mkstemp(dir=target.parent, prefix=f".{target.name}.")
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(data)
            os.replace(tmp_name, target)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise
        return target

    def delete(self, name: str | Path) -> bool:
        target = self.path(name)
        if not target.exists():
            return False
        target.unlink()
        return True

    def read_json(self, name: str | Path) -> Any:
        return json.loads(self.read(name).decode("utf-8"))

    def write_json(self, name: str | Path, data: Any, indent: int | None = None) -> Path:
        return self.write(name, json.dumps(data, indent=indent))

    def ensure_dir(self, name: str | Path) -> Path:
        directory = self.path(name)
        directory.mkdir(parents=True, exist_ok=True)
        return directory

    def delete_unlisted(self, directory: str | Path, keep: Iterable[str]) -> list[str]:
        """
        Delete every file in ``directory`` whose name is not in ``keep``.

        Returns:
            Names of the deleted files.
        """
        keep_set = set(keep)
        folder = self.path(directory)
        removed: list[str] = []

        if not folder.is_dir():
            return removed

        for entry in sorted(folder.iterdir()):
            if entry.is_file() and entry.name not in keep_set:
                entry.unlink()
                removed.append(entry.name)
                logger.debug(f"Removed stale file {entry.name}")

        return removed
