"""Analysis backends and the persistent engine process they talk to."""

import asyncio
from abc import ABC, abstractmethod
from collections import deque
from typing import AsyncIterator, Callable, Deque, List, Optional, Sequence, Tuple

from .analysis import AnalysisRequest
from .config import AssistConfig
from .errors import BackendUnavailable
from .uci_parser import (
    TERMINAL_EVENTS,
    AnalysisEvent,
    BestMoveEvent,
    ErrorEvent,
    format_go,
    parse_line,
)
from .utils import StatusKind, StatusReporter


class AnalysisBackend(ABC):
    """One request/response contract over heterogeneous analysis engines."""

    name = "backend"
    # Whether transient failures may be retried by the coordinator.
    retryable = False

    @abstractmethod
    async def start(self) -> bool:
        ...

    @abstractmethod
    def is_ready(self) -> bool:
        ...

    @abstractmethod
    def analyze(self, request: AnalysisRequest) -> AsyncIterator[AnalysisEvent]:
        """Stream events for ``request``; the last one is a BestMoveEvent or an ErrorEvent."""

    def cancel(self) -> None:
        """Best-effort; must not raise when nothing is in flight."""

    def mark_offline(self) -> None:
        pass

    def remediation(self) -> str:
        """One-line hint shown the first time the backend is found unusable."""
        return ""

    async def close(self) -> None:
        pass


class EngineProcess:
    """Minimal asyncio subprocess wrapper for a line-based engine."""

    def __init__(self, command: Sequence[str], *, workdir: Optional[str] = None) -> None:
        self.command = list(command)
        self.workdir = workdir
        self._proc: Optional[asyncio.subprocess.Process] = None

    async def start(self) -> None:
        self._proc = await asyncio.create_subprocess_exec(
            *self.command,
            stdin=asyncio.subprocess.PIPE,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.STDOUT,
            cwd=self.workdir,
        )

    def send(self, command: str) -> None:
        if self._proc is None or self._proc.stdin is None:
            return
        if self._proc.stdin.is_closing():
            return
        try:
            self._proc.stdin.write((command + "\n").encode())
        except (BrokenPipeError, ConnectionResetError):
            pass

    async def readline(self) -> str:
        if self._proc is None or self._proc.stdout is None:
            return ""
        try:
            data = await self._proc.stdout.readline()
        except (ConnectionResetError, ValueError):
            return ""
        return data.decode("utf-8", errors="replace")

    def poll(self) -> Optional[int]:
        if self._proc is None:
            return None
        return self._proc.returncode

    async def stop(self, timeout: float = 2.0) -> None:
        if self._proc is None:
            return
        self.send("quit")
        if self._proc.stdin:
            self._proc.stdin.close()
        try:
            await asyncio.wait_for(self._proc.wait(), timeout)
        except asyncio.TimeoutError:
            self._proc.terminate()
            try:
                await asyncio.wait_for(self._proc.wait(), 1.0)
            except asyncio.TimeoutError:
                self._proc.kill()
                await self._proc.wait()


ProcessFactory = Callable[[], EngineProcess]


class UciBackend(AnalysisBackend):
    """Persistent engine speaking the line protocol over stdin/stdout.

    A single reader task owns the engine's output. Searches are queued in the
    order their ``go`` was sent; every parsed event goes to the search at the
    head of that queue, and a ``bestmove`` line retires it. A search that was
    stopped therefore still receives its own trailing ``bestmove`` instead of
    leaking it into the search that replaced it.
    """

    name = "uci"
    HANDSHAKE_TIMEOUT = 5.0

    def __init__(
        self,
        config: AssistConfig,
        *,
        process_factory: Optional[ProcessFactory] = None,
        reporter: Optional[StatusReporter] = None,
    ) -> None:
        self._config = config
        self._process_factory = process_factory or (
            lambda: EngineProcess(self._config.engine_command)
        )
        self._reporter = reporter or StatusReporter()
        self._process: Optional[EngineProcess] = None
        self._reader: Optional[asyncio.Task] = None
        self._uciok: Optional[asyncio.Event] = None
        self._outstanding: Deque[Tuple[int, asyncio.Queue]] = deque()
        self._ready = False
        self.engine_name: Optional[str] = None

    def is_ready(self) -> bool:
        return self._ready

    @property
    def outstanding_generations(self) -> List[int]:
        return [generation for generation, _ in self._outstanding]

    async def start(self) -> bool:
        if self._ready:
            return True
        self._reporter.update("Loading engine...", StatusKind.BUSY)
        self._process = self._process_factory()
        self._uciok = asyncio.Event()
        try:
            await self._process.start()
        except OSError as exc:
            self._process = None
            self._reporter.update(f"Engine failed to start: {exc}", StatusKind.UNAVAILABLE)
            return False

        self._reader = asyncio.create_task(self._read_loop(self._process))
        self._send("uci")
        try:
            await asyncio.wait_for(self._uciok.wait(), self.HANDSHAKE_TIMEOUT)
        except asyncio.TimeoutError:
            self._reporter.update("Engine did not answer the uci handshake", StatusKind.UNAVAILABLE)
            await self.close()
            return False

        self.apply_options()
        self._send("ucinewgame")
        self._ready = True
        self._reporter.update(f"{self.engine_name or 'Engine'} ready", StatusKind.READY)
        return True

    def apply_options(self, multipv: Optional[int] = None) -> None:
        self._send(f"setoption name Hash value {self._config.hash_mb}")
        self._send(f"setoption name MultiPV value {multipv or self._config.multipv}")

    def analysis_commands(self, request: AnalysisRequest) -> List[str]:
        return [
            f"setoption name Hash value {self._config.hash_mb}",
            f"setoption name MultiPV value {request.multipv}",
            f"position fen {request.position}",
            format_go(request.think_time_ms),
        ]

    async def analyze(self, request: AnalysisRequest) -> AsyncIterator[AnalysisEvent]:
        if not self._ready:
            yield ErrorEvent(BackendUnavailable("Engine not started"))
            return

        queue: asyncio.Queue = asyncio.Queue()
        self._outstanding.append((request.generation, queue))
        for command in self.analysis_commands(request):
            self._send(command)

        while True:
            event = await queue.get()
            yield event
            if isinstance(event, TERMINAL_EVENTS):
                return

    def cancel(self) -> None:
        if self._process is None or not self._ready:
            return
        self._send("stop")

    def remediation(self) -> str:
        command = " ".join(self._config.engine_command)
        return f"Check that the engine command starts a UCI engine: {command}"

    async def close(self) -> None:
        process = self._process
        self._ready = False
        if process is not None:
            await process.stop()
        if self._reader is not None:
            self._reader.cancel()
            try:
                await self._reader
            except asyncio.CancelledError:
                pass
            self._reader = None
        self._fail_outstanding("Engine closed")
        self._process = None

    def _send(self, command: str) -> None:
        if self._process is None:
            return
        self._reporter.sending(command)
        self._process.send(command)

    async def _read_loop(self, process: EngineProcess) -> None:
        while True:
            line = await process.readline()
            if line == "":
                self._handle_eof(process)
                return
            line = line.strip()
            if not line:
                continue
            self._reporter.received(line)
            self._dispatch_line(line)

    def _dispatch_line(self, line: str) -> None:
        if line == "uciok":
            if self._uciok is not None:
                self._uciok.set()
            return
        if line.startswith("id name "):
            self.engine_name = line[len("id name "):].strip()
            return

        events = parse_line(line)
        if not events:
            self._reporter.debug(f"Unrecognised engine output dropped: {line}")
            return
        if not self._outstanding:
            self._reporter.debug(f"No search outstanding, dropped: {line}")
            return

        _, queue = self._outstanding[0]
        for event in events:
            queue.put_nowait(event)
            if isinstance(event, BestMoveEvent):
                self._outstanding.popleft()
                break

    def _handle_eof(self, process: EngineProcess) -> None:
        if process is not self._process:
            return
        was_ready = self._ready
        self._ready = False
        self._fail_outstanding("Engine process terminated")
        if was_ready:
            self._reporter.update("Engine process terminated", StatusKind.UNAVAILABLE)

    def _fail_outstanding(self, message: str) -> None:
        while self._outstanding:
            _, queue = self._outstanding.popleft()
            queue.put_nowait(ErrorEvent(BackendUnavailable(message)))
