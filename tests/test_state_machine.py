import pytest

from src.physarum.core.state_machine import CycleTracker, is_valid_transition, next_state
from src.physarum.domain.errors import InvalidStateError


def test_transitions():
    assert next_state("idle") == "awaiting_generation"
    assert is_valid_transition("awaiting_generation", "resolved")
    assert is_valid_transition("awaiting_generation", "streaming")
    assert not is_valid_transition("streaming", "awaiting_generation")
    assert next_state("resolved") is None


def test_tracker_rejects_illegal_moves():
    cycle = CycleTracker("e1")
    with pytest.raises(InvalidStateError):
        cycle.advance("streaming")
    cycle.advance("awaiting_generation")
    cycle.advance("resolved")
    assert cycle.resolved
    with pytest.raises(InvalidStateError):
        cycle.advance("streaming")
