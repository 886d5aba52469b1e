from live_transcription_agent.domain.enums import ControllerState
from live_transcription_agent.domain.state_machine import can_transition, is_terminal, transition


def test_transition_active_to_paused_and_back():
    r = transition(ControllerState.active, ControllerState.paused)
    assert r.ok is True
    assert r.state == ControllerState.paused
    assert transition(r.state, ControllerState.active).ok is True


def test_transition_starting_cannot_pause():
    r = transition(ControllerState.starting, ControllerState.paused)
    assert r.ok is False
    assert r.state == ControllerState.starting
    assert r.reason == "starting->paused not allowed"


def test_closed_is_final():
    for target in ControllerState:
        assert can_transition(ControllerState.closed, target) is False
    assert is_terminal(ControllerState.closing)
    assert is_terminal(ControllerState.closed)
    assert not is_terminal(ControllerState.paused)


def test_any_live_state_can_close():
    for state in (ControllerState.starting, ControllerState.active, ControllerState.paused):
        assert transition(state, ControllerState.closing).ok is True
