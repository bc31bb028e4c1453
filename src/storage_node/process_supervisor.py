"""
Supervisor for the external validation binary.

Owns at most one live process at a time and drives the state machine::

    Stopped  -> Starting -> Running | Stopped (startup failed)
    Running  -> Crashed (exit != 0) | Stopped (exit == 0)
    Crashed  -> Starting (after the restart delay) | Stopped
    Starting | Running -> Stopping -> Stopped

Synchronous precondition failures (already running, not running, binary
missing) are raised to the caller. Failures after spawn are published on the
event bus and drive the restart policy.
"""

from __future__ import annotations

import asyncio
import logging
import time
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Set

from .config import NodeType, SupervisorSettings
from .event_bus import EventBus, EventHandler, Unsubscribe
from .event_bus_helpers import EventKind
from .exceptions import (
    AlreadyRunningError,
    BinaryNotFoundError,
    MaxRestartsExceededError,
    NotRunningError,
    StartupFailedError,
    StartupTimeoutError,
    SupervisorError,
)
from .process_supervisor_helpers import (
    AsyncioProcessLauncher,
    ManagedProcess,
    ProcessHandle,
    ProcessLauncher,
    ProcessState,
    Readiness,
    ReadinessDetector,
    build_environment,
    build_launch_args,
    can_transition,
    classify_line,
    describe_exit,
    ensure_executable,
    find_available_port,
    terminate_process,
)
from .process_supervisor_helpers import output_classifier as tags
from .retry_policy import SleepFunc

logger = logging.getLogger(__name__)

_STREAM_DRAIN_TIMEOUT_SECONDS = 1.0

_TAG_EVENTS = {
    tags.TAG_VALIDATION: EventKind.VALIDATION,
    tags.TAG_STORAGE: EventKind.STORAGE,
    tags.TAG_CONNECTION: EventKind.CONNECTION,
    tags.TAG_ERROR: EventKind.PROCESS_ERROR,
}

_EXITED = "exited"


class ProcessSupervisor:
    """Sole writer of the :class:`ProcessHandle` state."""

    def __init__(
        self,
        bus: EventBus,
        settings: Optional[SupervisorSettings] = None,
        *,
        launcher: Optional[ProcessLauncher] = None,
        readiness: Optional[ReadinessDetector] = None,
        sleep: SleepFunc = asyncio.sleep,
        clock: Callable[[], float] = time.time,
        port_finder: Callable[[int], int] = find_available_port,
        check_binary: Callable[[Any], Path] = ensure_executable,
    ) -> None:
        self._bus = bus
        self.settings = settings
        self._launcher = launcher or AsyncioProcessLauncher()
        self._readiness = readiness or ReadinessDetector()
        self._sleep = sleep
        self._clock = clock
        self._port_finder = port_finder
        self._check_binary = check_binary
        self._disposed = False
        self._background: Set[asyncio.Task] = set()
        self._init_state()

    def _init_state(self) -> None:
        self._state = ProcessState.STOPPED
        self._process: Optional[ManagedProcess] = None
        self._pid: Optional[int] = None
        self._restart_count = 0
        self._started_at: Optional[float] = None
        self._last_exit_code: Optional[int] = None
        self._last_exit_signal: Optional[str] = None
        self._auto_restart_suspended = False
        self._expected_exit = False
        self._ready_future: Optional[asyncio.Future] = None
        self._monitor_task: Optional[asyncio.Task] = None
        self._restart_task: Optional[asyncio.Task] = None
        # identifies the launch allowed to install its process; stop and reset revoke it
        self._launch_token: Optional[object] = None

    # Public API

    @property
    def state(self) -> ProcessState:
        return self._state

    def configure(self, settings: SupervisorSettings) -> None:
        if self._state is not ProcessState.STOPPED:
            raise AlreadyRunningError(self._state.value, "Cannot reconfigure a live validation process")
        self.settings = settings

    def on(self, kind: EventKind, handler: EventHandler) -> Unsubscribe:
        return self._bus.subscribe(kind, handler)

    def get_status(self) -> ProcessHandle:
        uptime = 0.0
        if self._state is ProcessState.RUNNING and self._started_at is not None:
            uptime = max(0.0, self._clock() - self._started_at)
        return ProcessHandle(
            state=self._state,
            pid=self._pid,
            restart_count=self._restart_count,
            started_at=self._started_at,
            last_exit_code=self._last_exit_code,
            last_exit_signal=self._last_exit_signal,
            uptime_seconds=uptime,
        )

    def get_logs(self, limit: Optional[int] = 100) -> List[Dict[str, Any]]:
        return [event.to_dict() for event in self._bus.recent_logs(limit)]

    async def start(self, settings: Optional[SupervisorSettings] = None) -> ProcessHandle:
        """
        Launch the binary and wait until it reports readiness.

        Raises:
            AlreadyRunningError: If the state is not Stopped
            BinaryNotFoundError: If the binary is missing or not executable
            StartupTimeoutError: If no readiness line arrived in time
            StartupFailedError: If the process exited before becoming ready
        """
        if self._disposed:
            raise SupervisorError("Supervisor has been disposed")
        if self._state is not ProcessState.STOPPED:
            raise AlreadyRunningError(self._state.value)
        if settings is not None:
            self.settings = settings
        if self.settings is None:
            raise SupervisorError("Supervisor has no settings; call configure() first")
        self._check_binary(self.settings.binary_path)

        self._restart_count = 0
        return await self._launch(manual=True)

    async def stop(self, force: bool = False) -> ProcessHandle:
        """
        Stop the process: SIGTERM, then SIGKILL after the grace period.

        Auto-restart stays suspended until the stop has completed.

        Raises:
            NotRunningError: If the state is Stopped
        """
        if self._state is ProcessState.STOPPED:
            raise NotRunningError()

        self._auto_restart_suspended = True
        try:
            if self._state is ProcessState.CRASHED:
                self._cancel_restart()
                self._set_state(ProcessState.STOPPED)
                logger.info("Pending restart cancelled by stop request")
                self._publish_stopped()
            elif self._state is ProcessState.STOPPING:
                await self._await_monitor()
            else:
                await self._stop_process(force)
        finally:
            self._auto_restart_suspended = False
        return self.get_status()

    async def restart(self) -> ProcessHandle:
        if self._state is not ProcessState.STOPPED:
            await self.stop()
        return await self.start()

    async def reset(self) -> None:
        """Kill any live process, cancel pending work and return to the initial state."""
        self._launch_token = None
        self._cancel_restart()
        process = self._process
        self._expected_exit = True
        if process is not None and process.returncode is None:
            await terminate_process(process, grace_seconds=0.0, force=True)
        await self._await_monitor()
        for task in list(self._background):
            task.cancel()
        if self._background:
            await asyncio.gather(*self._background, return_exceptions=True)
        self._init_state()

    async def dispose(self) -> None:
        await self.reset()
        self._disposed = True

    # Launch and readiness

    async def _launch(self, *, manual: bool) -> ProcessHandle:
        settings = self.settings
        token = self._launch_token = object()
        self._set_state(ProcessState.STARTING)
        try:
            process = await self._spawn(settings)
        except SupervisorError as exc:
            if self._launch_token is token:
                self._launch_token = None
                self._set_state(ProcessState.STOPPED)
                self._bus.publish(EventKind.PROCESS_FAILED, error=str(exc))
            raise
        if self._launch_token is not token:
            logger.info("Stop requested while spawning; killing validation process %s", process.pid)
            await terminate_process(process, grace_seconds=0.0, force=True)
            raise SupervisorError("Startup interrupted by stop request", pid=process.pid)

        loop = asyncio.get_running_loop()
        self._process = process
        self._pid = process.pid
        self._started_at = self._clock()
        self._expected_exit = False
        ready = self._ready_future = loop.create_future()
        self._monitor_task = asyncio.create_task(self._monitor(process), name=f"validation-monitor-{process.pid}")
        self._bus.publish(EventKind.PROCESS_STARTING, pid=process.pid, attempt=self._restart_count)

        try:
            outcome = await asyncio.wait_for(ready, timeout=settings.startup_timeout_seconds)
        except asyncio.TimeoutError:
            self._release_ready(ready)
            await self._abort_startup(process, force=True)
            error = StartupTimeoutError(settings.startup_timeout_seconds)
            self._set_state(ProcessState.STOPPED)
            self._bus.publish(EventKind.PROCESS_FAILED, error=str(error))
            raise error from None
        self._release_ready(ready)

        if outcome is Readiness.READY:
            return self.get_status()
        if self._launch_token is not token:
            raise SupervisorError("Startup interrupted by stop request")

        if outcome is Readiness.FAILED:
            await self._abort_startup(process, force=False)
        return self._startup_failed(manual)

    async def _spawn(self, settings: SupervisorSettings) -> ManagedProcess:
        binary = self._check_binary(settings.binary_path)
        for directory in (settings.data_dir, settings.data_dir / "data", settings.working_dir):
            try:
                directory.mkdir(parents=True, exist_ok=True)
            except OSError as exc:
                raise SupervisorError(f"Cannot prepare data directory {directory}: {exc}", path=directory) from exc

        ws_port = None
        if settings.node_type is NodeType.STORAGE:
            try:
                ws_port = self._port_finder(8000)
            except OSError as exc:
                logger.warning("Could not find a free WebSocket port, using fallback: %s", exc)
        args = build_launch_args(settings, ws_port=ws_port)
        logger.info("Starting validation process for %s: %s %s", settings.account, binary, " ".join(args))
        try:
            return await self._launcher.spawn(binary, args, env=build_environment(settings), cwd=settings.working_dir)
        except FileNotFoundError as exc:
            raise BinaryNotFoundError(binary) from exc
        except OSError as exc:
            raise SupervisorError(f"Failed to spawn validation process: {exc}", path=binary) from exc

    def _release_ready(self, ready: asyncio.Future) -> None:
        if self._ready_future is ready:
            self._ready_future = None

    async def _abort_startup(self, process: ManagedProcess, *, force: bool) -> None:
        self._expected_exit = True
        if process.returncode is None:
            await terminate_process(process, grace_seconds=self.settings.stop_grace_seconds, force=force)
        await self._await_monitor()

    def _startup_failed(self, manual: bool) -> ProcessHandle:
        self._clear_process()
        if manual:
            error = StartupFailedError(self._last_exit_code)
            self._set_state(ProcessState.STOPPED)
            self._bus.publish(EventKind.PROCESS_FAILED, error=str(error))
            raise error
        logger.warning("Restarted validation process exited before becoming ready")
        self._crashed()
        return self.get_status()

    # Output and exit monitoring

    async def _monitor(self, process: ManagedProcess) -> None:
        pumps = [
            asyncio.create_task(self._pump(stream, name))
            for stream, name in ((process.stdout, "stdout"), (process.stderr, "stderr"))
            if stream is not None
        ]
        try:
            returncode = await process.wait()
            if pumps:
                _, pending = await asyncio.wait(pumps, timeout=_STREAM_DRAIN_TIMEOUT_SECONDS)
                for task in pending:
                    task.cancel()
        finally:
            for task in pumps:
                if not task.done():
                    task.cancel()
        self._on_exit(process, returncode)

    async def _pump(self, stream: asyncio.StreamReader, name: str) -> None:
        while True:
            try:
                raw = await stream.readline()
            except ValueError as exc:
                logger.warning("Dropping oversized %s line from validation process: %s", name, exc)
                continue
            if not raw:
                return
            line = raw.decode("utf-8", errors="replace").rstrip("\r\n")
            if line.strip():
                self._handle_line(line, name)

    def _handle_line(self, line: str, stream: str) -> None:
        classification = classify_line(line, stream)
        self._bus.publish(
            EventKind.LOG_LINE,
            stream=stream,
            level=classification.level,
            message=line,
            tag=classification.tag,
        )
        self._publish_tagged(classification, line)

        future = self._ready_future
        if self._state is ProcessState.STARTING and future is not None and not future.done():
            verdict = self._readiness.check(line, stream)
            if verdict is Readiness.READY:
                self._mark_ready()
            if verdict is not None:
                future.set_result(verdict)

    def _mark_ready(self) -> None:
        # Running before the monitor can observe an exit that follows the readiness line
        self._set_state(ProcessState.RUNNING)
        logger.info("Validation process ready (PID %s)", self._pid)
        self._bus.publish(EventKind.PROCESS_STARTED, pid=self._pid)

    def _publish_tagged(self, classification: tags.LineClassification, line: str) -> None:
        details = classification.details
        if classification.tag == tags.TAG_CONTRACT_REGISTERED:
            self._bus.publish(EventKind.CONTRACT_REGISTERED, cid=details["cid"], message=line)
        elif classification.tag == tags.TAG_REWARD:
            self._bus.publish(EventKind.REWARD, amount=details["amount"], token=details["token"], message=line)
        elif classification.tag in _TAG_EVENTS:
            self._bus.publish(_TAG_EVENTS[classification.tag], message=line, **details)

    def _on_exit(self, process: ManagedProcess, returncode: Optional[int]) -> None:
        if process is not self._process:
            return
        exit_code, exit_signal = describe_exit(returncode)
        self._last_exit_code = exit_code
        self._last_exit_signal = exit_signal
        logger.info("Validation process %s exited (code=%s, signal=%s)", process.pid, exit_code, exit_signal)

        future = self._ready_future
        if future is not None and not future.done():
            future.set_result(_EXITED)
            return
        if self._expected_exit or self._state is not ProcessState.RUNNING:
            self._clear_process()
            return

        self._clear_process()
        if returncode == 0:
            self._set_state(ProcessState.STOPPED)
            self._publish_stopped()
        else:
            self._crashed()

    # Restart policy

    def _crashed(self) -> None:
        self._set_state(ProcessState.CRASHED)
        self._bus.publish(
            EventKind.PROCESS_CRASHED,
            exit_code=self._last_exit_code,
            signal=self._last_exit_signal,
            restart_count=self._restart_count,
        )
        settings = self.settings
        if not settings.auto_restart or self._auto_restart_suspended:
            logger.info("Auto-restart disabled; validation process stays stopped")
            self._set_state(ProcessState.STOPPED)
            return
        if self._restart_count >= settings.max_restarts:
            error = MaxRestartsExceededError(settings.max_restarts)
            logger.error("%s", error)
            self._set_state(ProcessState.STOPPED)
            self._bus.publish(EventKind.MAX_RESTARTS_EXCEEDED, error=str(error), max_restarts=settings.max_restarts)
            return

        self._restart_count += 1
        self._bus.publish(
            EventKind.PROCESS_RESTARTING,
            attempt=self._restart_count,
            max_restarts=settings.max_restarts,
            delay_seconds=settings.restart_delay_seconds,
        )
        self._restart_task = self._track(asyncio.create_task(self._restart_after_delay(), name="validation-restart"))

    async def _restart_after_delay(self) -> None:
        await self._sleep(self.settings.restart_delay_seconds)
        self._restart_task = None
        if self._state is not ProcessState.CRASHED:
            return
        logger.info("Restarting validation process (attempt %d/%d)", self._restart_count, self.settings.max_restarts)
        try:
            await self._launch(manual=False)
        except SupervisorError as exc:
            logger.error("Restart attempt %d failed: %s", self._restart_count, exc)

    def _cancel_restart(self) -> None:
        task = self._restart_task
        self._restart_task = None
        if task is not None and not task.done():
            task.cancel()

    # Helpers

    async def _stop_process(self, force: bool) -> None:
        process = self._process
        self._launch_token = None
        self._set_state(ProcessState.STOPPING)
        self._expected_exit = True
        if process is not None:
            await terminate_process(process, grace_seconds=self.settings.stop_grace_seconds, force=force)
        await self._await_monitor()
        self._clear_process()
        self._set_state(ProcessState.STOPPED)
        self._publish_stopped()

    async def _await_monitor(self) -> None:
        task = self._monitor_task
        if task is None or task is asyncio.current_task():
            return
        await asyncio.gather(task, return_exceptions=True)
        if self._monitor_task is task:
            self._monitor_task = None

    def _publish_stopped(self) -> None:
        self._bus.publish(EventKind.PROCESS_STOPPED, exit_code=self._last_exit_code, signal=self._last_exit_signal)

    def _clear_process(self) -> None:
        self._process = None
        self._pid = None

    def _set_state(self, target: ProcessState) -> None:
        current = self._state
        if current is target:
            return
        if not can_transition(current, target):
            raise SupervisorError(f"Illegal supervisor transition {current.value} -> {target.value}")
        logger.debug("Supervisor state %s -> %s", current.value, target.value)
        self._state = target

    def _track(self, task: asyncio.Task) -> asyncio.Task:
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task


__all__ = ["ProcessSupervisor"]
