import pytest

from storage_node.process_supervisor_helpers import ProcessHandle, ProcessState, can_transition


@pytest.mark.parametrize(
    ("current", "target", "allowed"),
    [
        (ProcessState.STOPPED, ProcessState.STARTING, True),
        (ProcessState.STOPPED, ProcessState.RUNNING, False),
        (ProcessState.STARTING, ProcessState.RUNNING, True),
        (ProcessState.RUNNING, ProcessState.CRASHED, True),
        (ProcessState.RUNNING, ProcessState.STARTING, False),
        (ProcessState.CRASHED, ProcessState.STARTING, True),
        (ProcessState.CRASHED, ProcessState.RUNNING, False),
        (ProcessState.STOPPING, ProcessState.STOPPED, True),
        (ProcessState.STOPPING, ProcessState.CRASHED, False),
    ],
)
def test_transitions(current, target, allowed):
    assert can_transition(current, target) is allowed


def test_handle_defaults_and_serialization():
    handle = ProcessHandle()
    assert not handle.running
    assert handle.to_dict() == {
        "state": "stopped",
        "pid": None,
        "restart_count": 0,
        "started_at": None,
        "last_exit_code": None,
        "last_exit_signal": None,
        "uptime_seconds": 0.0,
    }
