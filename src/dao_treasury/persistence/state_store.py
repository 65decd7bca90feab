"""State store — JSON snapshot of every stream's ledger and the treasury balances.

Writes are atomic: the snapshot goes to a temporary file that replaces
the previous one, so a crash mid-write never leaves a half-written
state file behind.
"""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any

from dao_treasury.shares.engine import BalanceShareEngine

STATE_VERSION = 1


class StateStore:
    """File-backed snapshot store.

    Usage:
        store = StateStore(storage_path=data_dir / "state.json")
        store.save(engines, treasury)
        engines, treasury = store.load()
    """

    def __init__(self, storage_path: Path) -> None:
        self._storage_path = storage_path

    @property
    def exists(self) -> bool:
        return self._storage_path.exists()

    def save(
        self,
        engines: dict[str, BalanceShareEngine],
        treasury: dict[str, Any],
    ) -> None:
        """Persist all engines and the treasury balances. Raises OSError on failure."""
        document = {
            "version": STATE_VERSION,
            "streams": {sid: engine.to_dict() for sid, engine in engines.items()},
            "treasury": treasury,
        }
        tmp_path = self._storage_path.with_suffix(self._storage_path.suffix + ".tmp")
        with tmp_path.open("w", encoding="utf-8") as f:
            json.dump(document, f, indent=2, sort_keys=True)
        os.replace(tmp_path, self._storage_path)

    def load(self) -> tuple[dict[str, BalanceShareEngine], dict[str, Any]]:
        """Load the snapshot. Returns empty state if nothing has been saved."""
        if not self._storage_path.exists():
            return {}, {}
        with self._storage_path.open("r", encoding="utf-8") as f:
            document = json.load(f)
        version = document.get("version")
        if version != STATE_VERSION:
            raise ValueError(f"Unsupported state version: {version}")
        engines = {
            sid: BalanceShareEngine.from_dict(data)
            for sid, data in document.get("streams", {}).items()
        }
        return engines, document.get("treasury", {})
