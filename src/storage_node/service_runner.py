"""Run the storage node as a long-lived process with consistent shutdown handling."""

from __future__ import annotations

import asyncio
import logging
import os
import signal
import sys
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Callable, Coroutine, Iterator, Optional

from .config import NodeSettings
from .logging_config import setup_logging
from .node_service import StorageNodeService

try:
    import fcntl
except ImportError:  # pragma: no cover - fcntl unavailable on non-POSIX platforms  # policy_guard: allow-silent-handler
    fcntl = None

logger = logging.getLogger(__name__)

SERVICE_NAME = "storage-node"


class SingleInstanceError(RuntimeError):
    """Raised when another node already owns the data directory."""


class ServiceInstanceLock:
    """File lock in the data directory so two nodes never supervise the same identity."""

    def __init__(self, runtime_dir: Path, service_name: str = SERVICE_NAME) -> None:
        self.service_name = service_name
        self.runtime_dir = Path(runtime_dir)
        self.lock_path = self.runtime_dir / f"{service_name}.lock"
        self._fd: Optional[int] = None

    def acquire(self) -> None:
        if fcntl is None:  # pragma: no cover - non-POSIX platforms
            raise SingleInstanceError("Single instance enforcement requires fcntl on this platform.")

        self.runtime_dir.mkdir(parents=True, exist_ok=True)
        fd = os.open(self.lock_path, os.O_RDWR | os.O_CREAT, 0o664)
        try:
            fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
        except BlockingIOError as exc:
            existing_pid = os.read(fd, 32).decode("utf-8", errors="replace").strip()
            os.close(fd)
            suffix = f" (PID {existing_pid})." if existing_pid else "."
            raise SingleInstanceError(f"Service '{self.service_name}' appears to be running already" + suffix) from exc

        os.ftruncate(fd, 0)
        os.write(fd, str(os.getpid()).encode("utf-8"))
        os.fsync(fd)
        self._fd = fd

    def release(self) -> None:
        if self._fd is None:
            return
        try:
            fcntl.flock(self._fd, fcntl.LOCK_UN)
        finally:
            os.close(self._fd)
            self._fd = None
        try:
            self.lock_path.unlink()
        except FileNotFoundError:  # policy_guard: allow-silent-handler
            logger.debug("Lock file %s already removed", self.lock_path)


@contextmanager
def single_instance_guard(runtime_dir: Path, service_name: str = SERVICE_NAME) -> Iterator[ServiceInstanceLock]:
    lock = ServiceInstanceLock(runtime_dir, service_name)
    lock.acquire()
    try:
        yield lock
    finally:
        lock.release()


async def serve(service: StorageNodeService, stop_event: Optional[asyncio.Event] = None) -> None:
    """Start ``service`` and keep it running until ``stop_event`` is set or SIGINT/SIGTERM arrives."""
    stop_event = stop_event or asyncio.Event()
    loop = asyncio.get_running_loop()
    installed = []
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_event.set)
        except (NotImplementedError, RuntimeError):  # policy_guard: allow-silent-handler
            logger.debug("Signal handler for %s unavailable on this platform", sig)
            continue
        installed.append(sig)

    try:
        await service.start()
        await stop_event.wait()
        logger.info("Shutdown requested; stopping storage node")
    finally:
        for sig in installed:
            loop.remove_signal_handler(sig)
        await service.dispose()


ServiceFactory = Callable[[], Coroutine[Any, Any, None]]


def run_async_service(factory: ServiceFactory, *, service_name: str = SERVICE_NAME) -> None:
    """Run ``factory()`` on a fresh event loop with friendly Ctrl+C handling."""
    try:
        asyncio.run(factory())
    except KeyboardInterrupt:  # policy_guard: allow-silent-handler
        logger.info("%s service interrupted by user", service_name)


def main() -> None:
    settings = NodeSettings.from_env()
    setup_logging(SERVICE_NAME, settings.data_dir / "logs", debug=settings.debug)
    try:
        with single_instance_guard(settings.data_dir):
            run_async_service(lambda: serve(StorageNodeService(settings)))
    except SingleInstanceError as exc:
        sys.stderr.write(str(exc) + "\n")
        raise SystemExit(1) from exc


__all__ = [
    "SERVICE_NAME",
    "ServiceInstanceLock",
    "SingleInstanceError",
    "main",
    "run_async_service",
    "serve",
    "single_instance_guard",
]
