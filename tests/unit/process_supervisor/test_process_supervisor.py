import asyncio
from dataclasses import replace

import pytest
import pytest_asyncio

from storage_node.event_bus_helpers import EventKind
from storage_node.exceptions import (
    AlreadyRunningError,
    BinaryNotFoundError,
    NotRunningError,
    StartupFailedError,
    StartupTimeoutError,
    SupervisorError,
)
from storage_node.process_supervisor import ProcessSupervisor
from storage_node.process_supervisor_helpers import ProcessState
from tests.helpers.polling import wait_until
from tests.helpers.process_fakes import (
    READY_LINE,
    FakeLauncher,
    accept_binary,
    announce_ready,
    no_sleep,
    ready_then_crash,
    supervisor_settings,
)


def kinds(events):
    return [event.kind for event in events if event.kind is not EventKind.LOG_LINE]


@pytest_asyncio.fixture
async def make_supervisor(bus, tmp_path):
    created = []

    def _factory(launcher, **overrides):
        options = dict(
            launcher=launcher,
            sleep=overrides.pop("sleep", no_sleep),
            port_finder=lambda start: 8123,
            check_binary=overrides.pop("check_binary", accept_binary),
        )
        supervisor = ProcessSupervisor(bus, supervisor_settings(tmp_path, **overrides), **options)
        created.append(supervisor)
        return supervisor

    yield _factory
    for supervisor in created:
        await supervisor.dispose()


@pytest.mark.asyncio
async def test_start_waits_for_readiness(make_supervisor, recorded_events, tmp_path):
    launcher = FakeLauncher(announce_ready)
    supervisor = make_supervisor(launcher)

    handle = await supervisor.start()

    assert handle.state is ProcessState.RUNNING
    assert handle.running
    assert handle.pid == 4000
    assert handle.restart_count == 0
    assert kinds(recorded_events) == [EventKind.PROCESS_STARTING, EventKind.PROCESS_STARTED]
    spawn = launcher.spawned[0]
    assert "-WS_PORT=8123" in spawn.args
    assert spawn.env["POA_DATA_PATH"] == str(tmp_path / "poa-data")
    assert spawn.cwd == tmp_path / "poa-data"
    assert (tmp_path / "poa-data" / "data").is_dir()


@pytest.mark.asyncio
async def test_second_start_is_rejected(make_supervisor):
    supervisor = make_supervisor(FakeLauncher(announce_ready))
    await supervisor.start()

    with pytest.raises(AlreadyRunningError):
        await supervisor.start()
    with pytest.raises(AlreadyRunningError):
        supervisor.configure(supervisor.settings)


@pytest.mark.asyncio
async def test_stop_without_process_is_rejected(make_supervisor):
    supervisor = make_supervisor(FakeLauncher(announce_ready))

    with pytest.raises(NotRunningError):
        await supervisor.stop()


@pytest.mark.asyncio
async def test_graceful_stop_sends_sigterm(make_supervisor, recorded_events):
    launcher = FakeLauncher(announce_ready)
    supervisor = make_supervisor(launcher)
    await supervisor.start()

    handle = await supervisor.stop()

    assert handle.state is ProcessState.STOPPED
    assert handle.pid is None
    assert handle.last_exit_signal == "SIGTERM"
    assert launcher.last.signals == ["SIGTERM"]
    assert kinds(recorded_events)[-1] is EventKind.PROCESS_STOPPED
    assert EventKind.PROCESS_CRASHED not in kinds(recorded_events)


@pytest.mark.asyncio
async def test_stop_escalates_to_sigkill_after_grace(make_supervisor):
    launcher = FakeLauncher(announce_ready, ignore_terminate=True)
    supervisor = make_supervisor(launcher)
    await supervisor.start()

    handle = await supervisor.stop()

    assert launcher.last.signals == ["SIGTERM", "SIGKILL"]
    assert handle.last_exit_signal == "SIGKILL"
    assert supervisor.state is ProcessState.STOPPED


@pytest.mark.asyncio
async def test_forced_stop_skips_sigterm(make_supervisor):
    launcher = FakeLauncher(announce_ready)
    supervisor = make_supervisor(launcher)
    await supervisor.start()

    await supervisor.stop(force=True)

    assert launcher.last.signals == ["SIGKILL"]


@pytest.mark.asyncio
async def test_crashes_restart_until_limit(make_supervisor, recorded_events):
    launcher = FakeLauncher(ready_then_crash(1))
    supervisor = make_supervisor(launcher, max_restarts=3)

    await supervisor.start()
    await wait_until(lambda: EventKind.MAX_RESTARTS_EXCEEDED in kinds(recorded_events))

    assert len(launcher.spawned) == 4
    assert supervisor.state is ProcessState.STOPPED
    crashes = [event for event in recorded_events if event.kind is EventKind.PROCESS_CRASHED]
    assert [event["restart_count"] for event in crashes] == [0, 1, 2, 3]
    assert all(event["exit_code"] == 1 for event in crashes)
    restarts = [event["attempt"] for event in recorded_events if event.kind is EventKind.PROCESS_RESTARTING]
    assert restarts == [1, 2, 3]
    assert kinds(recorded_events).count(EventKind.MAX_RESTARTS_EXCEEDED) == 1
    assert supervisor.get_status().restart_count == 3


@pytest.mark.asyncio
async def test_manual_start_resets_restart_count(make_supervisor, recorded_events):
    launcher = FakeLauncher(ready_then_crash(1))
    supervisor = make_supervisor(launcher, max_restarts=1)
    await supervisor.start()
    await wait_until(lambda: EventKind.MAX_RESTARTS_EXCEEDED in kinds(recorded_events))

    launcher.on_spawn = announce_ready
    handle = await supervisor.start()

    assert handle.restart_count == 0
    assert handle.state is ProcessState.RUNNING


@pytest.mark.asyncio
async def test_clean_exit_stops_without_restart(make_supervisor, recorded_events):
    launcher = FakeLauncher(ready_then_crash(0))
    supervisor = make_supervisor(launcher)

    await supervisor.start()
    await wait_until(lambda: supervisor.state is ProcessState.STOPPED)

    assert len(launcher.spawned) == 1
    assert kinds(recorded_events)[-1] is EventKind.PROCESS_STOPPED
    assert supervisor.get_status().last_exit_code == 0


@pytest.mark.asyncio
async def test_crash_without_auto_restart_stays_stopped(make_supervisor, recorded_events):
    launcher = FakeLauncher(ready_then_crash(3))
    supervisor = make_supervisor(launcher, auto_restart=False)

    await supervisor.start()
    await wait_until(lambda: supervisor.state is ProcessState.STOPPED)

    assert len(launcher.spawned) == 1
    assert EventKind.PROCESS_CRASHED in kinds(recorded_events)
    assert EventKind.PROCESS_RESTARTING not in kinds(recorded_events)


@pytest.mark.asyncio
async def test_stop_while_crashed_cancels_pending_restart(make_supervisor, recorded_events):
    async def never_wake(_seconds):
        await asyncio.Event().wait()

    launcher = FakeLauncher(ready_then_crash(1))
    supervisor = make_supervisor(launcher, sleep=never_wake)
    await supervisor.start()
    await wait_until(lambda: supervisor.state is ProcessState.CRASHED)

    handle = await supervisor.stop()

    assert handle.state is ProcessState.STOPPED
    assert kinds(recorded_events)[-1] is EventKind.PROCESS_STOPPED
    await asyncio.sleep(0.02)
    assert len(launcher.spawned) == 1


@pytest.mark.asyncio
async def test_startup_timeout_kills_process(make_supervisor, recorded_events):
    launcher = FakeLauncher()
    supervisor = make_supervisor(launcher, startup_timeout_seconds=0.05)

    with pytest.raises(StartupTimeoutError):
        await supervisor.start()

    assert launcher.last.signals == ["SIGKILL"]
    assert supervisor.state is ProcessState.STOPPED
    assert supervisor.get_status().pid is None
    assert kinds(recorded_events)[-1] is EventKind.PROCESS_FAILED


@pytest.mark.asyncio
async def test_exit_before_readiness_fails_manual_start(make_supervisor, recorded_events):
    launcher = FakeLauncher(lambda process, _index: process.exit(2))
    supervisor = make_supervisor(launcher)

    with pytest.raises(StartupFailedError) as excinfo:
        await supervisor.start()

    assert excinfo.value.exit_code == 2
    assert supervisor.state is ProcessState.STOPPED
    assert len(launcher.spawned) == 1
    assert EventKind.PROCESS_RESTARTING not in kinds(recorded_events)
    assert kinds(recorded_events)[-1] is EventKind.PROCESS_FAILED


@pytest.mark.asyncio
async def test_content_store_failure_during_startup(make_supervisor):
    launcher = FakeLauncher(lambda process, _index: process.emit("Failed to connect to IPFS: connection refused"))
    supervisor = make_supervisor(launcher)

    with pytest.raises(StartupFailedError):
        await supervisor.start()

    assert launcher.last.signals == ["SIGTERM"]
    assert supervisor.state is ProcessState.STOPPED


@pytest.mark.asyncio
async def test_failed_restart_attempt_counts_as_crash(make_supervisor, recorded_events):
    def script(process, index):
        if index == 1:
            ready_then_crash(1)(process, index)
        else:
            process.exit(1)

    launcher = FakeLauncher(script)
    supervisor = make_supervisor(launcher, max_restarts=2)

    await supervisor.start()
    await wait_until(lambda: EventKind.MAX_RESTARTS_EXCEEDED in kinds(recorded_events))

    assert len(launcher.spawned) == 3
    assert supervisor.state is ProcessState.STOPPED


@pytest.mark.asyncio
async def test_missing_binary_is_reported_before_spawn(bus, tmp_path):
    launcher = FakeLauncher(announce_ready)
    supervisor = ProcessSupervisor(bus, supervisor_settings(tmp_path), launcher=launcher)

    with pytest.raises(BinaryNotFoundError):
        await supervisor.start()

    assert launcher.spawned == []
    assert supervisor.state is ProcessState.STOPPED


@pytest.mark.asyncio
async def test_spawn_failure_publishes_process_failed(make_supervisor, recorded_events):
    launcher = FakeLauncher(announce_ready)
    launcher.spawn_error = FileNotFoundError("proofofaccess")
    supervisor = make_supervisor(launcher)

    with pytest.raises(BinaryNotFoundError):
        await supervisor.start()

    assert supervisor.state is ProcessState.STOPPED
    assert kinds(recorded_events) == [EventKind.PROCESS_FAILED]


@pytest.mark.asyncio
async def test_output_lines_become_typed_events(make_supervisor, recorded_events):
    def script(process, _index):
        process.emit(READY_LINE)
        process.emit("Storage contract stored CID: QmContract123")
        process.emit("Reward earned: 1.5 broca")
        process.emit("dial: connection refused", stream="stderr")

    supervisor = make_supervisor(FakeLauncher(script))
    await supervisor.start()
    await wait_until(lambda: len(supervisor.get_logs()) == 4)

    registered = [event for event in recorded_events if event.kind is EventKind.CONTRACT_REGISTERED]
    assert [event["cid"] for event in registered] == ["QmContract123"]
    rewards = [event for event in recorded_events if event.kind is EventKind.REWARD]
    assert (rewards[0]["amount"], rewards[0]["token"]) == (1.5, "BROCA")
    logs = supervisor.get_logs()
    assert [entry["stream"] for entry in logs] == ["stdout", "stdout", "stdout", "stderr"]
    assert logs[-1]["tag"] == "p2p-noise"
    assert logs[-1]["level"] == "info"
    assert len(supervisor.get_logs(limit=2)) == 2


@pytest.mark.asyncio
async def test_restart_replaces_process(make_supervisor):
    launcher = FakeLauncher(announce_ready)
    supervisor = make_supervisor(launcher)
    await supervisor.start()

    handle = await supervisor.restart()

    assert handle.state is ProcessState.RUNNING
    assert handle.pid == 4001
    assert launcher.spawned[0].process.signals == ["SIGTERM"]


@pytest.mark.asyncio
async def test_reset_and_dispose(make_supervisor):
    launcher = FakeLauncher(announce_ready)
    supervisor = make_supervisor(launcher)
    await supervisor.start()

    await supervisor.reset()
    assert supervisor.get_status().state is ProcessState.STOPPED
    assert launcher.last.signals == ["SIGKILL"]

    await supervisor.dispose()
    with pytest.raises(SupervisorError):
        await supervisor.start()


@pytest.mark.asyncio
async def test_status_reports_uptime(bus, tmp_path):
    now = [100.0]
    supervisor = ProcessSupervisor(
        bus,
        supervisor_settings(tmp_path),
        launcher=FakeLauncher(announce_ready),
        clock=lambda: now[0],
        port_finder=lambda start: start,
        check_binary=accept_binary,
    )
    await supervisor.start()
    now[0] = 130.0

    status = supervisor.get_status()

    assert status.started_at == 100.0
    assert status.uptime_seconds == 30.0
    assert status.to_dict()["state"] == "running"
    await supervisor.dispose()


def live_pids(launcher):
    return [record.process.pid for record in launcher.spawned if record.process.returncode is None]


@pytest.mark.asyncio
async def test_stop_during_spawn_discards_the_late_process(make_supervisor, recorded_events):
    launcher = FakeLauncher(announce_ready)
    launcher.gate = asyncio.Event()
    supervisor = make_supervisor(launcher)
    starting = asyncio.create_task(supervisor.start())
    await wait_until(lambda: supervisor.state is ProcessState.STARTING)

    handle = await supervisor.stop()
    assert handle.state is ProcessState.STOPPED
    assert handle.pid is None

    launcher.gate.set()
    with pytest.raises(SupervisorError, match="interrupted"):
        await starting

    assert supervisor.state is ProcessState.STOPPED
    assert supervisor.get_status().pid is None
    assert launcher.spawned[0].process.signals == ["SIGKILL"]
    assert live_pids(launcher) == []
    assert kinds(recorded_events) == [EventKind.PROCESS_STOPPED]

    await supervisor.start()
    assert live_pids(launcher) == [4001]
    assert supervisor.get_status().pid == 4001


@pytest.mark.asyncio
async def test_stop_before_readiness_interrupts_start(make_supervisor, recorded_events):
    launcher = FakeLauncher()
    supervisor = make_supervisor(launcher)
    starting = asyncio.create_task(supervisor.start())
    await wait_until(lambda: supervisor.get_status().pid == 4000)

    handle = await supervisor.stop()
    with pytest.raises(SupervisorError, match="interrupted"):
        await starting

    assert handle.state is ProcessState.STOPPED
    assert supervisor.state is ProcessState.STOPPED
    assert supervisor.get_status().pid is None
    assert launcher.last.signals == ["SIGTERM"]
    assert kinds(recorded_events) == [EventKind.PROCESS_STARTING, EventKind.PROCESS_STOPPED]


@pytest.mark.asyncio
async def test_unusable_data_dir_fails_start_cleanly(make_supervisor, recorded_events, tmp_path):
    blocker = tmp_path / "blocker"
    blocker.write_text("not a directory")
    launcher = FakeLauncher(announce_ready)
    supervisor = make_supervisor(launcher, data_dir=blocker, working_dir=blocker)

    with pytest.raises(SupervisorError, match="Cannot prepare data directory"):
        await supervisor.start()

    assert supervisor.state is ProcessState.STOPPED
    assert launcher.spawned == []
    assert kinds(recorded_events) == [EventKind.PROCESS_FAILED]

    blocker.unlink()
    handle = await supervisor.start()
    assert handle.state is ProcessState.RUNNING


@pytest.mark.asyncio
async def test_unusable_data_dir_on_restart_ends_stopped(make_supervisor, recorded_events, tmp_path):
    blocker = tmp_path / "blocker"
    blocker.write_text("not a directory")
    launcher = FakeLauncher(ready_then_crash(1))
    supervisor = make_supervisor(launcher)
    await supervisor.start()
    supervisor.settings = replace(supervisor.settings, data_dir=blocker, working_dir=blocker)

    await wait_until(lambda: EventKind.PROCESS_FAILED in kinds(recorded_events))

    assert supervisor.state is ProcessState.STOPPED
    assert len(launcher.spawned) == 1
    assert kinds(recorded_events)[-3:] == [
        EventKind.PROCESS_CRASHED,
        EventKind.PROCESS_RESTARTING,
        EventKind.PROCESS_FAILED,
    ]
