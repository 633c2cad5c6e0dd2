"""
JSON artifacts shared between stages.

Every stage writes its output under the data directory and the next stage
reads it back, so stages can be rerun individually. Each write replaces
the previous run's file.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict, List

import ijson

from .errors import MissingArtifactError
from .flow import FlowIndex
from .sandwich import SandwichesBySlot

SIGNATURES_FILE = "signature-slot.json"
BALANCE_FLOW_FILE = "balance-flow.json"
SANDWICHES_FILE = "filtered_sandwiches.json"
SLOT_LEADERS_FILE = "slot-leader.json"
ANALYSIS_FILE = "validator-analysis.json"

PRODUCER_STAGE = {
    SIGNATURES_FILE: "collect",
    BALANCE_FLOW_FILE: "filter",
    SANDWICHES_FILE: "filter",
    SLOT_LEADERS_FILE: "leaders",
    ANALYSIS_FILE: "analyze",
}


class ArtifactStore:
    def __init__(self, data_dir: Path) -> None:
        self.data_dir = Path(data_dir)

    def path(self, filename: str) -> Path:
        return self.data_dir / filename

    def _write(self, filename: str, data: Any) -> Path:
        self.data_dir.mkdir(parents=True, exist_ok=True)
        p = self.path(filename)
        p.write_text(json.dumps(data, indent=4))
        return p

    def _require(self, filename: str) -> Path:
        p = self.path(filename)
        if not p.exists():
            raise MissingArtifactError(filename, PRODUCER_STAGE[filename])
        return p

    def discard(self, *filenames: str) -> None:
        """Delete stale outputs; missing files are ignored."""
        for filename in filenames:
            self.path(filename).unlink(missing_ok=True)

    def _read(self, filename: str) -> Any:
        return json.loads(self._require(filename).read_text())

    # signatures

    def save_signatures(self, signature_to_slot: Dict[str, int]) -> Path:
        return self._write(SIGNATURES_FILE, signature_to_slot)

    def load_signatures(self) -> Dict[str, int]:
        # can run to hundreds of thousands of entries; stream it
        with self._require(SIGNATURES_FILE).open("rb") as f:
            return {sig: int(slot) for sig, slot in ijson.kvitems(f, "")}

    # flow index

    def save_flow_index(self, flow_index: FlowIndex) -> Path:
        return self._write(BALANCE_FLOW_FILE, flow_index.to_nested())

    # sandwiches

    def save_sandwiches(self, sandwiches: SandwichesBySlot) -> Path:
        data: Dict[str, List[List[str]]] = {
            str(slot): [list(bracket) for bracket in brackets]
            for slot, brackets in sandwiches.items()
        }
        return self._write(SANDWICHES_FILE, data)

    def load_sandwiches(self) -> SandwichesBySlot:
        raw = self._read(SANDWICHES_FILE)
        return {
            int(slot): [(b[0], b[1]) for b in brackets]
            for slot, brackets in sorted(raw.items(), key=lambda kv: int(kv[0]))
        }

    # slot leaders

    def save_slot_leaders(self, slot_leaders: Dict[str, str]) -> Path:
        return self._write(SLOT_LEADERS_FILE, slot_leaders)

    def load_slot_leaders(self) -> Dict[str, str]:
        return {str(k): v for k, v in self._read(SLOT_LEADERS_FILE).items()}

    # report

    def save_analysis(self, report: Dict[str, Any]) -> Path:
        return self._write(ANALYSIS_FILE, report)
