#!/usr/bin/env python3
"""Ledger invariant checks against a persisted treasury state.

Usage:
    python3 tools/check_invariants.py [DATA_DIR]
"""

import sys
from pathlib import Path

from dao_treasury.config import TreasuryConfig
from dao_treasury.persistence.state_store import StateStore
from dao_treasury.service import TreasuryService


ROOT = Path(__file__).resolve().parents[1]
CONFIG_DIR = ROOT / "config"
DEFAULT_DATA_DIR = ROOT / "data"


def check(data_dir: Path = DEFAULT_DATA_DIR) -> int:
    config = TreasuryConfig.from_config_dir(CONFIG_DIR)
    service = TreasuryService(config, state_store=StateStore(data_dir / "state.json"))
    errors = service.check_invariants()

    if errors:
        print("Invariant check FAILED:")
        for err in errors:
            print(f"  - {err}")
        return 1

    status = service.status()
    print("Invariant check PASSED.")
    for sid, stream in status["streams"].items():
        print(
            f"  {sid}: total_bps={stream['total_bps']} "
            f"checkpoints={stream['checkpoints']} earmarked={stream['earmarked']}"
        )
    return 0


if __name__ == "__main__":
    target = Path(sys.argv[1]) if len(sys.argv) > 1 else DEFAULT_DATA_DIR
    raise SystemExit(check(target))
