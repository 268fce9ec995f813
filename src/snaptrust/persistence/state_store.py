"""State store — a single JSON document holding every persisted record.

Layout of state.json:
    {
      "version": 1,
      "links": [...],
      "assignments": [...],
      "periods": [...],
      "notices": [...],
      "checkins": [...]
    }

Writes go to a sibling temp file that is then renamed over the target,
so a crash mid-write leaves the previous document intact. Scores and
outcome facts are never written; they are derived on read.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

STATE_FILENAME = "state.json"
STATE_VERSION = 1
SECTIONS = ("links", "assignments", "periods", "notices", "checkins")


class StateStore:
    """JSON-file persistence for engine records."""

    def __init__(self, path: Path) -> None:
        self._path = Path(path)

    @classmethod
    def in_dir(cls, data_dir: Path) -> StateStore:
        return cls(Path(data_dir) / STATE_FILENAME)

    @property
    def path(self) -> Path:
        return self._path

    def exists(self) -> bool:
        return self._path.exists()

    def load(self) -> dict[str, list[dict[str, Any]]]:
        """Return every section; missing file or section → empty lists.

        Raises ValueError on an unknown version or a malformed document.
        """
        empty = {name: [] for name in SECTIONS}
        if not self._path.exists():
            return empty
        with self._path.open("r", encoding="utf-8") as f:
            data = json.load(f)
        if not isinstance(data, dict):
            raise ValueError(f"State file {self._path} is not a JSON object")
        version = data.get("version", STATE_VERSION)
        if version != STATE_VERSION:
            raise ValueError(
                f"Unsupported state version {version} in {self._path} "
                f"(expected {STATE_VERSION})"
            )
        for name in SECTIONS:
            section = data.get(name, [])
            if not isinstance(section, list):
                raise ValueError(f"State section '{name}' must be a list")
            empty[name] = section
        return empty

    def save(self, state: dict[str, list[dict[str, Any]]]) -> None:
        """Write all sections. Raises OSError on I/O failure."""
        document: dict[str, Any] = {"version": STATE_VERSION}
        for name in SECTIONS:
            document[name] = state.get(name, [])
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self._path.with_suffix(self._path.suffix + ".tmp")
        with tmp.open("w", encoding="utf-8") as f:
            json.dump(document, f, indent=2, sort_keys=True)
        tmp.replace(self._path)
        logger.debug("State saved to %s", self._path)
