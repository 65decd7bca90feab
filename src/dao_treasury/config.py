"""Treasury configuration — parameter file plus environment overrides.

Parameters live in ``treasury_params.json`` inside a config directory:

    {
      "owner": "0x...",
      "streams": ["deposits", "distributions"],
      "default_removable_after_seconds": 2592000
    }

The bit-exact constants (MAX_BPS, MAX_CHECKPOINT_BALANCE) are not
configurable.
"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any, Optional

from dotenv import load_dotenv

from dao_treasury.shares.identity import normalize_identity

PARAMS_FILE = "treasury_params.json"
DEFAULT_STREAMS = ("deposits", "distributions")


@dataclass(frozen=True)
class TreasuryConfig:
    """Validated treasury parameters."""
    owner: str
    streams: tuple[str, ...] = DEFAULT_STREAMS
    default_removable_after_seconds: int = 0

    def __post_init__(self) -> None:
        object.__setattr__(self, "owner", normalize_identity(self.owner))
        if not self.streams:
            raise ValueError("At least one stream must be configured")
        if len(set(self.streams)) != len(self.streams):
            raise ValueError(f"Duplicate stream ids: {list(self.streams)}")
        if self.default_removable_after_seconds < 0:
            raise ValueError("default_removable_after_seconds cannot be negative")

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> TreasuryConfig:
        return cls(
            owner=data["owner"],
            streams=tuple(data.get("streams", DEFAULT_STREAMS)),
            default_removable_after_seconds=int(
                data.get("default_removable_after_seconds", 0)
            ),
        )

    @classmethod
    def from_config_dir(cls, config_dir: Path) -> TreasuryConfig:
        """Load parameters from ``config_dir / treasury_params.json``."""
        path = config_dir / PARAMS_FILE
        with path.open("r", encoding="utf-8") as handle:
            return cls.from_dict(json.load(handle))

    def with_env_overrides(self, env_file: Optional[Path] = None) -> TreasuryConfig:
        """Apply TREASURY_OWNER from the environment (and an optional .env file)."""
        load_dotenv(env_file)
        owner = os.getenv("TREASURY_OWNER")
        if owner:
            return replace(self, owner=owner)
        return self
