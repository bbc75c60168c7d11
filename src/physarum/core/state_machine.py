from __future__ import annotations

from typing import Dict, List, Optional

from ..domain.errors import InvalidStateError

# Query-response cycle transitions
CYCLE_TRANSITIONS: Dict[str, List[str]] = {
    "idle": ["awaiting_generation"],
    "awaiting_generation": ["streaming", "resolved"],
    "streaming": ["resolved"],
    "resolved": [],
}


def next_state(current: str) -> Optional[str]:
    options = CYCLE_TRANSITIONS.get(current, [])
    return options[0] if options else None


def is_valid_transition(current: str, target: str) -> bool:
    return target in CYCLE_TRANSITIONS.get(current, [])


class CycleTracker:
    """Tracks one query-response cycle for a single assistant entry."""

    def __init__(self, entry_id: str) -> None:
        self.entry_id = entry_id
        self.state = "idle"
        self.history: List[str] = ["idle"]

    def advance(self, target: str) -> str:
        if not is_valid_transition(self.state, target):
            raise InvalidStateError(f"Illegal cycle transition {self.state} -> {target} for {self.entry_id}")
        self.state = target
        self.history.append(target)
        return target

    @property
    def resolved(self) -> bool:
        return self.state == "resolved"
