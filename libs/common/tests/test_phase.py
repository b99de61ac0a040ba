"""Tests for the phase state machine."""

import itertools

import pytest

from hearth_common import (
    TRANSITIONS,
    Phase,
    ReplicaState,
    derive_phase,
    is_valid_transition,
    next_phase,
)


class TestDerivePhase:
    """Test cases for derive_phase."""

    def test_children_created_is_pending(self):
        """A pass that had to create children reports Pending."""
        phase, _ = derive_phase(False, ReplicaState(desired=1, ready=0, actual=0), True)
        assert phase == Phase.PENDING

    def test_starting_while_not_ready(self):
        """Desired replicas not yet ready reports Starting."""
        phase, message = derive_phase(False, ReplicaState(desired=1, ready=0, actual=1))
        assert phase == Phase.STARTING
        assert "0/1" in message

    def test_running_when_ready(self):
        """All desired replicas ready reports Running."""
        phase, _ = derive_phase(False, ReplicaState(desired=1, ready=1, actual=1))
        assert phase == Phase.RUNNING

    def test_stopping_while_draining(self):
        """Stopped with replicas still present reports Stopping."""
        phase, _ = derive_phase(True, ReplicaState(desired=0, ready=1, actual=1))
        assert phase == Phase.STOPPING

    def test_stopped_when_drained(self):
        """Stopped with no replicas reports Stopped."""
        phase, _ = derive_phase(True, ReplicaState(desired=0, ready=0, actual=0))
        assert phase == Phase.STOPPED

    def test_zero_desired_not_stopped_is_starting(self):
        """A workload unit scaled to zero without stopped is still starting."""
        phase, _ = derive_phase(False, ReplicaState(desired=0, ready=0, actual=0))
        assert phase == Phase.STARTING

    def test_never_running_below_desired(self):
        """Running is never reported while ready replicas are below desired."""
        for stopped, created, desired, ready, actual in itertools.product(
            [False, True], [False, True], range(3), range(3), range(3)
        ):
            phase, _ = derive_phase(
                stopped, ReplicaState(desired=desired, ready=ready, actual=actual), created
            )
            if ready < desired:
                assert phase != Phase.RUNNING

    def test_stop_from_running_visits_stopping(self):
        """Stopping a running server goes through Stopping while replicas drain."""
        previous = Phase.RUNNING
        phase, _ = next_phase(previous, True, ReplicaState(desired=0, ready=1, actual=1))
        assert phase == Phase.STOPPING

        phase, _ = next_phase(phase, True, ReplicaState(desired=0, ready=0, actual=0))
        assert phase == Phase.STOPPED

    def test_stop_with_no_replicas_goes_straight_to_stopped(self):
        """A running server whose replicas are already gone may go to Stopped."""
        phase, _ = next_phase(Phase.RUNNING, True, ReplicaState(desired=0, ready=0, actual=0))
        assert phase == Phase.STOPPED


class TestTransitions:
    """Test cases for the transition table."""

    def test_table_is_exhaustive(self):
        """Every phase has an entry in the table."""
        assert set(TRANSITIONS) == set(Phase)

    @pytest.mark.parametrize("phase", [p for p in Phase if p != Phase.ERROR])
    def test_any_phase_can_error(self, phase):
        """Every phase may move to Error."""
        assert is_valid_transition(phase, Phase.ERROR)

    @pytest.mark.parametrize("phase", [p for p in Phase if p != Phase.ERROR])
    def test_error_is_not_terminal(self, phase):
        """Error may recover to every other phase."""
        assert is_valid_transition(Phase.ERROR, phase)

    def test_initial_phase_always_valid(self):
        """A workload without a phase may enter any phase."""
        for phase in Phase:
            assert is_valid_transition(None, phase)

    def test_stopped_cannot_jump_to_running(self):
        """A stopped server has to start before it runs."""
        assert not is_valid_transition(Phase.STOPPED, Phase.RUNNING)

    def test_pending_cannot_jump_to_running(self):
        """Pending servers pass through Starting."""
        assert not is_valid_transition(Phase.PENDING, Phase.RUNNING)
