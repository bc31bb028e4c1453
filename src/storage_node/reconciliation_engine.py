"""
Contract-driven pin reconciliation.

Each cycle keeps the local pin set equal to the union of content refs of the
contracts currently assigned to the account:

    fetch contracts -> parse -> list pinned -> diff -> pin/unpin -> commit

A failure in either fetch step aborts the cycle before anything is mutated,
so a transient outage can never cause mass unpinning. Only CIDs this engine
pinned itself (the managed set) are ever candidates for removal.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections import deque
from typing import Any, Callable, Deque, Dict, List, Optional, Sequence, Set, Tuple

from .clients.interfaces import ContentStore, Directory
from .config import ReconciliationSettings
from .contract_helpers import DEFAULT_STRATEGIES, Contract, PinRecord, is_valid_cid, parse_contract
from .contract_registry import ContractRegistry
from .event_bus import EventBus
from .event_bus_helpers import EventKind
from .reconciliation_helpers import (
    FETCH_CONTRACTS_STAGE,
    LIST_PINNED_STAGE,
    PIN,
    UNPIN,
    CycleFailure,
    FetchFailureReporter,
    ManagedPinStore,
    PinExecutor,
    ReconciliationCycleResult,
    scatter_order,
)
from .retry_policy import RetryPolicy, SleepFunc

logger = logging.getLogger(__name__)

DEFAULT_HISTORY_SIZE = 50


class _CycleAborted(Exception):
    def __init__(self, stage: str, error: BaseException) -> None:
        super().__init__(f"{stage}: {error}")
        self.stage = stage
        self.error = error


class ReconciliationEngine:
    """Sole writer of the contract registry and of the managed pin set."""

    def __init__(
        self,
        content_store: ContentStore,
        directory: Directory,
        bus: EventBus,
        settings: ReconciliationSettings,
        *,
        registry: Optional[ContractRegistry] = None,
        pin_store: Optional[ManagedPinStore] = None,
        strategies: Sequence[Any] = DEFAULT_STRATEGIES,
        cid_validator: Callable[[Any], bool] = is_valid_cid,
        history_size: int = DEFAULT_HISTORY_SIZE,
        sleep: SleepFunc = asyncio.sleep,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if not settings.account:
            raise ValueError("Reconciliation requires an account")
        self._content_store = content_store
        self._directory = directory
        self._bus = bus
        self.settings = settings
        self.registry = registry if registry is not None else ContractRegistry()
        self._pin_store = pin_store if pin_store is not None else ManagedPinStore()
        self._strategies = tuple(strategies)
        self._validator = cid_validator
        self._clock = clock
        self._executor = PinExecutor(
            content_store,
            policy=RetryPolicy(max_attempts=settings.pin_attempts, initial_delay=settings.pin_retry_delay_seconds),
            timeout_seconds=settings.pin_timeout_seconds,
            max_concurrency=settings.max_concurrent_pins,
            sleep=sleep,
        )
        self._reporter = FetchFailureReporter(bus)
        self._lock = asyncio.Lock()
        # queued run shared by callers that arrive while a cycle is in flight
        self._follow_up: Optional[asyncio.Task] = None
        self._history: Deque[ReconciliationCycleResult] = deque(maxlen=history_size)
        self._managed: Dict[str, PinRecord] = {
            cid: record for cid, record in self._pin_store.load().items() if cid not in settings.static_pins
        }
        self._cycle_count = 0
        self._error_count = 0
        self._last_cycle_at: Optional[float] = None
        self._last_error: Optional[str] = None

    @property
    def in_flight(self) -> bool:
        return self._lock.locked()

    def managed_pins(self) -> Dict[str, PinRecord]:
        return dict(self._managed)

    def recent_cycles(self, limit: Optional[int] = None) -> List[ReconciliationCycleResult]:
        """Most recent cycle results, oldest first."""
        entries = list(self._history)
        if limit is None:
            return entries
        return entries[-limit:] if limit > 0 else []

    def get_stats(self) -> Dict[str, Any]:
        return {
            "contracts": len(self.registry),
            "pinned_count": len(self._managed),
            "last_cycle_at": self._last_cycle_at,
            "cycle_count": self._cycle_count,
            "error_count": self._error_count,
            "last_error": self._last_error,
        }

    async def run_cycle(self) -> ReconciliationCycleResult:
        """
        Run one reconciliation cycle.

        Callers arriving while a cycle is in flight all share a single
        follow-up cycle that starts once the current one finishes.
        """
        follow_up = self._follow_up
        if follow_up is None or follow_up.done():
            if not self._lock.locked():
                return await self._locked_cycle()
            follow_up = self._follow_up = asyncio.create_task(self._locked_cycle(), name="reconciliation-follow-up")
        return await asyncio.shield(follow_up)

    async def _locked_cycle(self) -> ReconciliationCycleResult:
        async with self._lock:
            if self._follow_up is asyncio.current_task():
                self._follow_up = None
            started = time.perf_counter()
            self._bus.publish(EventKind.CYCLE_STARTED)
            try:
                result = await self._reconcile(started)
            except _CycleAborted as aborted:
                result = self._aborted_result(aborted, started)
                self._record(result, error=str(aborted))
                self._reporter.report_failure(aborted.stage, aborted.error)
                return result

            self._record(result, error=_summarize_failures(result.failures))
            self._reporter.report_success()
            logger.info(
                "Reconciliation cycle complete: %d contracts, %d required, +%d/-%d pins, %d failures in %.0fms",
                result.contracts_seen,
                result.required_cid_count,
                result.new_pins,
                result.removed_pins,
                len(result.failures),
                result.duration_ms,
            )
            self._bus.publish(EventKind.CYCLE_COMPLETE, result=result)
            return result

    async def _reconcile(self, started: float) -> ReconciliationCycleResult:
        account = self.settings.account
        try:
            snapshots = await self._directory.fetch_assigned_contracts(account)
        except Exception as exc:  # any directory failure leaves state untouched
            raise _CycleAborted(FETCH_CONTRACTS_STAGE, exc) from exc

        contracts, warnings = self._parse(snapshots)
        required: Set[str] = set()
        for contract in contracts.values():
            required.update(contract.content_refs)

        try:
            actual = set(await self._content_store.list_pinned())
        except Exception as exc:  # same guarantee for the content store listing
            raise _CycleAborted(LIST_PINNED_STAGE, exc) from exc

        self.registry.upsert(contracts.values())
        self.registry.remove_missing(contracts.keys())

        static_pins = self.settings.static_pins
        to_pin = required - actual
        to_unpin = (actual & set(self._managed)) - required - static_pins
        dirty = self._refresh_ownership(required, actual)

        failures: List[CycleFailure] = []
        new_pins = await self._apply_pins(contracts.values(), to_pin, failures)
        removed_pins = await self._apply_unpins(to_unpin, failures)
        if new_pins or removed_pins or dirty:
            self._persist()

        return ReconciliationCycleResult(
            contracts_seen=len(contracts),
            required_cid_count=len(required),
            new_pins=new_pins,
            removed_pins=removed_pins,
            failures=tuple(failures),
            duration_ms=_elapsed_ms(started),
            warnings=warnings,
            completed_at=self._clock(),
        )

    def _parse(self, snapshots: Sequence[Any]) -> Tuple[Dict[str, Contract], int]:
        contracts: Dict[str, Contract] = {}
        warnings = 0
        for body in snapshots:
            parsed = parse_contract(body, self._strategies, validator=self._validator)
            if parsed.contract is None:
                warnings += 1
                self._warn(_raw_id(body), parsed.problem)
                continue
            contract = parsed.contract
            for rejected in parsed.rejected_refs:
                warnings += 1
                self._warn(contract.id, str(rejected), ref=rejected.ref)
            if not contract.content_refs:
                warnings += 1
                self._warn(contract.id, "contract has no extractable content references")
            contracts[contract.id] = contract
        return contracts, warnings

    def _warn(self, contract_id: str, reason: str, **extra: Any) -> None:
        self._bus.publish(EventKind.CONTRACT_WARNING, contract_id=contract_id, reason=reason, **extra)

    def _refresh_ownership(self, required: Set[str], actual: Set[str]) -> bool:
        """Sync managed records with the registry; returns True when anything changed."""
        changed = False
        for cid in list(self._managed):
            record = self._managed[cid]
            if cid in self.settings.static_pins or (cid not in required and cid not in actual):
                del self._managed[cid]
                changed = True
                continue
            sources = self.registry.get_source_contracts(cid)
            if cid in required and sources != record.source_contract_ids:
                record.source_contract_ids = sources
                changed = True
        return changed

    async def _apply_pins(self, contracts: Any, to_pin: Set[str], failures: List[CycleFailure]) -> int:
        ordered = scatter_order([contract.content_refs for contract in contracts], to_pin)
        pinned = 0
        for outcome in await self._executor.run(PIN, ordered):
            if not outcome.ok:
                failures.append(self._failure(outcome.cid, PIN, outcome.error))
                continue
            pinned += 1
            sources = self.registry.get_source_contracts(outcome.cid)
            if outcome.cid not in self.settings.static_pins:
                self._managed[outcome.cid] = PinRecord(cid=outcome.cid, source_contract_ids=sources, pinned_at=self._clock())
            self._bus.publish(EventKind.PIN_ADDED, cid=outcome.cid, contract_ids=sorted(sources))
        return pinned

    async def _apply_unpins(self, to_unpin: Set[str], failures: List[CycleFailure]) -> int:
        removed = 0
        for outcome in await self._executor.run(UNPIN, sorted(to_unpin)):
            if not outcome.ok:
                failures.append(self._failure(outcome.cid, UNPIN, outcome.error))
                continue
            removed += 1
            self._managed.pop(outcome.cid, None)
            self._bus.publish(EventKind.PIN_REMOVED, cid=outcome.cid)
        return removed

    def _failure(self, cid: str, operation: str, error: Optional[BaseException]) -> CycleFailure:
        message = str(error) or type(error).__name__
        self._bus.publish(EventKind.PIN_FAILED, cid=cid, operation=operation, error=message)
        return CycleFailure(cid=cid, operation=operation, error=message)

    def _persist(self) -> None:
        try:
            self._pin_store.save(self._managed)
        except OSError as exc:
            # in-memory ownership stays authoritative; retried after the next change
            logger.error("Failed to persist managed pins: %s", exc)

    def _aborted_result(self, aborted: _CycleAborted, started: float) -> ReconciliationCycleResult:
        message = str(aborted.error) or type(aborted.error).__name__
        return ReconciliationCycleResult(
            contracts_seen=len(self.registry),
            required_cid_count=len(self.registry.get_required_cids()),
            failures=(CycleFailure(cid=None, operation=aborted.stage, error=message),),
            duration_ms=_elapsed_ms(started),
            aborted=True,
            completed_at=self._clock(),
        )

    def _record(self, result: ReconciliationCycleResult, *, error: Optional[str]) -> None:
        self._history.append(result)
        self._cycle_count += 1
        self._last_cycle_at = result.completed_at
        if error:
            self._error_count += 1
            self._last_error = error


def _elapsed_ms(started: float) -> float:
    return round((time.perf_counter() - started) * 1000.0, 3)


def _raw_id(body: Any) -> str:
    if isinstance(body, dict):
        return str(body.get("id") or body.get("i") or "")
    return ""


def _summarize_failures(failures: Sequence[CycleFailure]) -> Optional[str]:
    if not failures:
        return None
    first = failures[0]
    suffix = f" (+{len(failures) - 1} more)" if len(failures) > 1 else ""
    return f"{first.operation} {first.cid}: {first.error}{suffix}"


__all__ = ["DEFAULT_HISTORY_SIZE", "ReconciliationEngine"]
