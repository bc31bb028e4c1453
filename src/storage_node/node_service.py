"""
Composition root for a storage node.

``StorageNodeService`` owns every component explicitly (no module-level
singletons) and follows the lifecycle::

    construct -> configure -> start -> stop -> dispose

It wires supervisor events to the reconciliation scheduler and keeps the
on-disk status snapshot current.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Callable, Dict, List, Optional

from .clients import IpfsContentStore, SpkDirectory
from .clients.interfaces import ContentStore, Directory
from .config import ConfigurationError, NodeSettings
from .contract_registry import ContractRegistry
from .event_bus import EventBus, Unsubscribe
from .event_bus_helpers import Event, EventKind
from .exceptions import AlreadyRunningError, NotRunningError, StorageNodeError, SupervisorError
from .process_supervisor import ProcessSupervisor
from .process_supervisor_helpers import ProcessLauncher, ProcessState
from .reconciliation_engine import ReconciliationEngine
from .reconciliation_helpers import ManagedPinStore, ReconciliationCycleResult
from .reconciliation_scheduler import ReconciliationScheduler
from .retry_policy import SleepFunc
from .status_snapshot import StatusSnapshotStore

logger = logging.getLogger(__name__)

_PROCESS_DOWN_EVENTS = (
    EventKind.PROCESS_STOPPED,
    EventKind.PROCESS_CRASHED,
    EventKind.PROCESS_FAILED,
    EventKind.MAX_RESTARTS_EXCEEDED,
)


class StorageNodeService:
    """Owns the bus, supervisor, registry, engine, scheduler, clients and snapshot store."""

    def __init__(
        self,
        settings: Optional[NodeSettings] = None,
        *,
        bus: Optional[EventBus] = None,
        content_store: Optional[ContentStore] = None,
        directory: Optional[Directory] = None,
        launcher: Optional[ProcessLauncher] = None,
        sleep: SleepFunc = asyncio.sleep,
        clock: Callable[[], float] = time.time,
        **supervisor_options: Any,
    ) -> None:
        self.bus = bus or EventBus()
        self.registry = ContractRegistry()
        self.supervisor = ProcessSupervisor(self.bus, launcher=launcher, sleep=sleep, clock=clock, **supervisor_options)
        self.settings: Optional[NodeSettings] = None
        self.content_store: Optional[ContentStore] = None
        self.directory: Optional[Directory] = None
        self.engine: Optional[ReconciliationEngine] = None
        self.scheduler: Optional[ReconciliationScheduler] = None
        self.snapshot_store: Optional[StatusSnapshotStore] = None
        self.registered = False
        self._content_store_override = content_store
        self._directory_override = directory
        self._sleep = sleep
        self._clock = clock
        self._subscriptions: List[Unsubscribe] = []
        self._started = False
        self._disposed = False
        if settings is not None:
            self.configure(settings)

    @property
    def started(self) -> bool:
        return self._started

    def configure(self, settings: NodeSettings) -> None:
        """Build (or rebuild) every component from ``settings``; only allowed while stopped."""
        if self._disposed:
            raise StorageNodeError("Storage node service has been disposed")
        if self._started:
            raise AlreadyRunningError("started", "Stop the storage node before reconfiguring it")
        settings.validate()

        self.settings = settings
        self.content_store = self._content_store_override or IpfsContentStore(
            settings.content_store_url,
            request_timeout_seconds=settings.pin_timeout_seconds,
        )
        self.directory = self._directory_override or SpkDirectory(
            settings.directory_url,
            retries=settings.directory_retries,
            retry_delay_seconds=settings.directory_retry_delay_seconds,
            sleep=self._sleep,
        )
        self.supervisor.configure(settings.supervisor_settings())
        self.registry.clear()
        self.engine = ReconciliationEngine(
            self.content_store,
            self.directory,
            self.bus,
            settings.reconciliation_settings(),
            registry=self.registry,
            pin_store=ManagedPinStore(settings.managed_pins_path),
            sleep=self._sleep,
            clock=self._clock,
        )
        self.scheduler = ReconciliationScheduler(
            self.engine,
            interval_seconds=settings.reconciliation_interval_seconds,
            debounce_seconds=settings.trigger_debounce_seconds,
            sleep=self._sleep,
        )
        self.snapshot_store = StatusSnapshotStore(
            settings.status_snapshot_path,
            freshness_seconds=settings.status_freshness_seconds,
            clock=self._clock,
        )
        logger.info("Storage node configured for %s (%s node)", settings.account, settings.node_type.name.lower())

    async def start(self, *, launch_process: bool = True) -> Dict[str, Any]:
        """
        Start reconciliation and, unless disabled, the validation process.

        Raises:
            ConfigurationError: If ``configure`` was never called
            AlreadyRunningError: If the service is already started
            SupervisorError: If the validation process could not be started
        """
        if self.settings is None or self.scheduler is None:
            raise ConfigurationError.missing_value("settings", "call configure() before start()")
        if self._started:
            raise AlreadyRunningError("started")

        self._wire_events()
        self.scheduler.start()
        self._started = True
        if launch_process:
            try:
                await self.supervisor.start()
            except SupervisorError:
                logger.exception("Validation process failed to start; rolling back")
                await self._shutdown()
                raise
        return self.status()

    async def stop(self) -> None:
        if not self._started:
            raise NotRunningError("Storage node service is not running")
        await self._shutdown()

    async def dispose(self) -> None:
        if self._started:
            await self._shutdown()
        await self.supervisor.dispose()
        self.bus.clear_logs()
        self._disposed = True

    async def sync_now(self) -> ReconciliationCycleResult:
        if self.scheduler is None:
            raise NotRunningError("Storage node service is not configured")
        return await self.scheduler.force_sync()

    def status(self) -> Dict[str, Any]:
        snapshot = self.snapshot_store.load() if self.snapshot_store is not None else None
        return {
            "started": self._started,
            "registered": self.registered,
            "process": self.supervisor.get_status().to_dict(),
            "reconciliation": self.engine.get_stats() if self.engine is not None else None,
            "scheduler": {
                "running": self.scheduler.running if self.scheduler is not None else False,
                "pending": self.scheduler.pending if self.scheduler is not None else False,
            },
            "snapshot": snapshot.to_dict() if snapshot is not None else None,
        }

    async def _shutdown(self) -> None:
        await self.scheduler.stop()
        if self.supervisor.state is not ProcessState.STOPPED:
            await self.supervisor.stop()
        for unsubscribe in self._subscriptions:
            unsubscribe()
        self._subscriptions.clear()
        await self.bus.drain()
        await self._close_owned_clients()
        self._started = False

    async def _close_owned_clients(self) -> None:
        for client, override in ((self.content_store, self._content_store_override), (self.directory, self._directory_override)):
            if client is not None and override is None:
                await client.close()

    def _wire_events(self) -> None:
        subscribe = self.bus.subscribe
        self._subscriptions = [
            subscribe(EventKind.CONTRACT_REGISTERED, self._on_contract_registered),
            subscribe(EventKind.CONNECTION, self._on_connection),
            subscribe(EventKind.PROCESS_STARTED, self._on_process_started),
        ]
        self._subscriptions.extend(subscribe(kind, self._on_process_down) for kind in _PROCESS_DOWN_EVENTS)

    def _on_contract_registered(self, event: Event) -> None:
        self.registered = True
        self.scheduler.trigger(f"contract registered: {event['cid']}")

    def _on_connection(self, _event: Event) -> None:
        if not self.registered:
            self.registered = True
            self._save_snapshot()

    def _on_process_started(self, event: Event) -> None:
        self._save_snapshot()
        self.scheduler.trigger(f"validation process started (PID {event['pid']})")

    def _on_process_down(self, _event: Event) -> None:
        self.registered = False
        self._save_snapshot()

    def _save_snapshot(self) -> None:
        handle = self.supervisor.get_status()
        try:
            self.snapshot_store.save(handle.running, pid=handle.pid, registered=self.registered)
        except OSError as exc:
            logger.warning("Could not write status snapshot %s: %s", self.snapshot_store.path, exc)


__all__ = ["StorageNodeService"]
