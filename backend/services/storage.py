"""
Stockage des fichiers (pièces jointes, fichiers d'erreur d'import).

Interface minimale : add_file / get_file / delete_file.
LocalObjectStorage écrit sous STORAGE_DIR et renvoie des URLs file://.
"""

from __future__ import annotations

import logging
import uuid
from pathlib import Path
from typing import Protocol
from urllib.parse import unquote, urlparse

from backend.app.core.config import STORAGE_DIR

logger = logging.getLogger(__name__)


class ObjectStorage(Protocol):
    def add_file(self, filename: str, data: bytes) -> str: ...

    def get_file(self, url: str) -> bytes: ...

    def delete_file(self, url: str) -> None: ...


class LocalObjectStorage:
    def __init__(self, root: str | Path = STORAGE_DIR) -> None:
        self.root = Path(root).resolve()
        self.root.mkdir(parents=True, exist_ok=True)

    def _path(self, url: str) -> Path:
        path = Path(unquote(urlparse(url).path)).resolve()
        if self.root not in path.parents:
            raise FileNotFoundError(url)
        return path

    def add_file(self, filename: str, data: bytes) -> str:
        # préfixe unique : deux uploads du même nom ne s'écrasent pas
        path = self.root / f"{uuid.uuid4().hex}-{Path(filename).name}"
        path.write_bytes(data)
        logger.info("Stored %s (%d bytes)", path.name, len(data))
        return path.as_uri()

    def get_file(self, url: str) -> bytes:
        return self._path(url).read_bytes()

    def delete_file(self, url: str) -> None:
        self._path(url).unlink(missing_ok=True)
