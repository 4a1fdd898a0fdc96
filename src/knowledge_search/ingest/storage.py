"""Durable storage for raw uploads."""

from __future__ import annotations

import asyncio
from pathlib import Path, PurePath

import structlog

from knowledge_search.errors import ValidationError

logger = structlog.get_logger(__name__)


class LocalFileStorage:
    """Stores uploads on local disk under their original base name.

    A second upload with the same name overwrites the first one and logs a
    warning.
    """

    def __init__(self, root: str | Path) -> None:
        self.root = Path(root)

    def path_for(self, filename: str) -> Path:
        name = PurePath(filename.replace("\\", "/")).name
        if name in ("", ".", ".."):
            raise ValidationError(f"Invalid filename: {filename!r}")
        return self.root / name

    async def save(self, content: bytes, filename: str) -> Path:
        destination = self.path_for(filename)
        await asyncio.to_thread(self._write, destination, content)
        return destination

    async def delete(self, filename: str) -> bool:
        destination = self.path_for(filename)
        return await asyncio.to_thread(self._unlink, destination)

    @staticmethod
    def _write(destination: Path, content: bytes) -> None:
        destination.parent.mkdir(parents=True, exist_ok=True)
        if destination.exists():
            logger.warning("overwriting stored upload", path=str(destination))
        destination.write_bytes(content)

    @staticmethod
    def _unlink(destination: Path) -> bool:
        if not destination.exists():
            return False
        destination.unlink()
        return True
