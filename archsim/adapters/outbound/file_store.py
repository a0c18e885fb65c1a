"""
File Store Adapter

Implements IBlueprintStore for the local filesystem.
"""

import json
import os
from typing import Any

from archsim.application.ports import IBlueprintStore


class LocalFileStore(IBlueprintStore):
    """
    Local filesystem implementation of IBlueprintStore.

    Paths are resolved relative to ``root`` when one is given.
    """

    def __init__(self, root: str = ""):
        self.root = root

    def _resolve(self, path: str) -> str:
        return os.path.join(self.root, path) if self.root else path

    def read_json(self, path: str) -> Any:
        """Read JSON file and return parsed content."""
        with open(self._resolve(path), 'r', encoding='utf-8') as f:
            return json.load(f)

    def write_json(self, path: str, data: Any) -> str:
        """Write data as JSON to file. Returns the written path."""
        path = self._resolve(path)
        self.makedirs(os.path.dirname(path))
        with open(path, 'w', encoding='utf-8') as f:
            json.dump(data, f, indent=2, default=str)
        return path

    def exists(self, path: str) -> bool:
        return os.path.exists(self._resolve(path))

    def makedirs(self, path: str) -> None:
        """Create directory and parents if they don't exist."""
        if path:
            os.makedirs(path, exist_ok=True)
