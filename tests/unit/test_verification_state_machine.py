"""Unit tests for the challenge completion state machine."""

from __future__ import annotations

import pytest

from hq.challenges.verification import VALID_TRANSITIONS, validate_transition
from hq.enums import CompletionStatus
from hq.errors import InvalidTransitionError

TERMINAL = ["approved", "rejected", "failed"]


class TestCompletionStateMachine:
    def test_every_status_has_an_entry(self):
        assert set(VALID_TRANSITIONS) == {s.value for s in CompletionStatus}

    @pytest.mark.parametrize("target", TERMINAL)
    def test_pending_resolves_to_any_terminal(self, target):
        validate_transition("pending", target)

    @pytest.mark.parametrize("current", TERMINAL)
    def test_terminal_states_have_no_exits(self, current):
        assert VALID_TRANSITIONS[current] == []
        for target in ["pending", *TERMINAL]:
            with pytest.raises(InvalidTransitionError, match="Invalid transition"):
                validate_transition(current, target)

    def test_pending_cannot_stay_pending(self):
        with pytest.raises(InvalidTransitionError):
            validate_transition("pending", "pending")

    def test_unknown_status_rejected(self):
        with pytest.raises(InvalidTransitionError):
            validate_transition("archived", "approved")
