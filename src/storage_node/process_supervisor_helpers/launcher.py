"""Spawning the validation binary behind a minimal process-handle interface."""

from __future__ import annotations

import asyncio
import logging
import math
import os
import signal
import socket
from pathlib import Path
from typing import Dict, List, Mapping, Optional, Protocol, Sequence, Tuple, Union

from ..config import NodeType, SupervisorSettings
from ..exceptions import BinaryNotFoundError

logger = logging.getLogger(__name__)

GIB = 1024 ** 3
DEFAULT_WS_PORT = 8000
FALLBACK_WS_PORT = 8001
DATA_PATH_ENV = "POA_DATA_PATH"


class ManagedProcess(Protocol):
    """The subset of :class:`asyncio.subprocess.Process` the supervisor uses."""

    pid: int
    returncode: Optional[int]
    stdout: Optional[asyncio.StreamReader]
    stderr: Optional[asyncio.StreamReader]

    async def wait(self) -> int: ...

    def send_signal(self, sig: int) -> None: ...

    def terminate(self) -> None: ...

    def kill(self) -> None: ...


class ProcessLauncher(Protocol):
    async def spawn(
        self,
        path: Union[str, Path],
        args: Sequence[str],
        *,
        env: Mapping[str, str],
        cwd: Union[str, Path],
    ) -> ManagedProcess: ...


class AsyncioProcessLauncher:
    """Spawns a real OS process with piped stdout/stderr."""

    async def spawn(
        self,
        path: Union[str, Path],
        args: Sequence[str],
        *,
        env: Mapping[str, str],
        cwd: Union[str, Path],
    ) -> ManagedProcess:
        return await asyncio.create_subprocess_exec(
            str(path),
            *args,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            env=dict(env),
            cwd=str(cwd),
        )


def ensure_executable(path: Union[str, Path]) -> Path:
    """Return ``path`` if it is an executable file, else raise :class:`BinaryNotFoundError`."""
    candidate = Path(path).expanduser()
    if not candidate.is_file():
        raise BinaryNotFoundError(candidate)
    if not os.access(candidate, os.X_OK):
        raise BinaryNotFoundError(candidate, f"Validation binary at {candidate} is not executable")
    return candidate


def storage_limit_gib(limit_bytes: int) -> int:
    return int(math.ceil(limit_bytes / GIB))


def build_launch_args(settings: SupervisorSettings, *, ws_port: Optional[int] = None) -> List[str]:
    args = [
        "-node",
        str(settings.node_type.value),
        "-username",
        settings.account,
        f"-IPFS_PORT={settings.content_store_port}",
        "-useWS",
        f"-url={settings.directory_url}",
    ]
    if settings.node_type is NodeType.STORAGE:
        args.append(f"-WS_PORT={ws_port if ws_port is not None else FALLBACK_WS_PORT}")
        if settings.storage_limit_bytes > 0:
            args.append(f"-storageLimit={storage_limit_gib(settings.storage_limit_bytes)}")
    if settings.debug:
        args.append("-debug")
    return args


def build_environment(settings: SupervisorSettings, base: Optional[Mapping[str, str]] = None) -> Dict[str, str]:
    env = dict(os.environ if base is None else base)
    env[DATA_PATH_ENV] = str(settings.data_dir)
    return env


def find_available_port(start: int = DEFAULT_WS_PORT, *, host: str = "127.0.0.1", attempts: int = 100) -> int:
    """First port at or above ``start`` that can be bound on ``host``."""
    for port in range(start, start + attempts):
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as probe:
            try:
                probe.bind((host, port))
            except OSError as exc:
                logger.debug("Port %d unavailable on %s: %s", port, host, exc)
                continue
            return port
    raise OSError(f"No free port in range {start}-{start + attempts - 1}")


def describe_exit(returncode: Optional[int]) -> Tuple[Optional[int], Optional[str]]:
    """Split a returncode into ``(exit_code, signal_name)``; negative codes mean a signal."""
    if returncode is None:
        return None, None
    if returncode < 0:
        try:
            return None, signal.Signals(-returncode).name
        except ValueError:
            return None, f"SIG{-returncode}"
    return returncode, None


__all__ = [
    "AsyncioProcessLauncher",
    "DATA_PATH_ENV",
    "ManagedProcess",
    "ProcessLauncher",
    "build_environment",
    "build_launch_args",
    "describe_exit",
    "ensure_executable",
    "find_available_port",
    "storage_limit_gib",
]
