"""Single owner of the current analysis generation.

Every request gets a fresh generation id. Events are written to the shared
session only while their request's generation is still the current one, so
late results from a superseded request (a slow retry, a trailing
``bestmove`` after ``stop``) can never reach shared state.
"""

import asyncio
from dataclasses import dataclass
from typing import Callable, List, Optional, Set

from .analysis import AnalysisRequest, AnalysisSession, SessionMode
from .clock import SYSTEM_CLOCK, Clock
from .engine_comm import AnalysisBackend
from .errors import (
    AssistError,
    BackendBusy,
    BackendRequestError,
    BackendTimeout,
    BackendUnavailable,
)
from .evaluation import summarize
from .state import OrchestratorState
from .uci_parser import ErrorEvent
from .utils import StatusKind, StatusReporter

SessionListener = Callable[[AnalysisSession], None]


@dataclass(frozen=True)
class RetryPolicy:
    """Backoff for transient HTTP failures; one attempt counter for every class."""

    busy_retries: int = 4
    busy_base_delay: float = 0.150
    busy_step: float = 0.150
    timeout_retries: int = 1
    timeout_delay: float = 0.200

    def delay_for(self, error: AssistError, attempt: int) -> Optional[float]:
        if isinstance(error, BackendBusy) and attempt < self.busy_retries:
            return self.busy_base_delay + attempt * self.busy_step
        if isinstance(error, BackendTimeout) and attempt < self.timeout_retries:
            return self.timeout_delay
        return None


class RequestCoordinator:
    def __init__(
        self,
        state: OrchestratorState,
        backend: AnalysisBackend,
        *,
        clock: Clock = SYSTEM_CLOCK,
        reporter: Optional[StatusReporter] = None,
        retry_policy: Optional[RetryPolicy] = None,
    ) -> None:
        self.state = state
        self.backend = backend
        self.clock = clock
        self.reporter = reporter or StatusReporter()
        self.retry_policy = retry_policy or RetryPolicy()
        self.completion_listeners: List[SessionListener] = []
        self.preemption_listeners: List[SessionListener] = []
        self._tasks: Set[asyncio.Task] = set()
        self._current_task: Optional[asyncio.Task] = None
        self._start_task: Optional[asyncio.Task] = None
        self._remediation_shown = False

    @property
    def requesting(self) -> bool:
        return self.state.requesting

    @property
    def analysing(self) -> bool:
        """True while a normal request is in flight; evaluation probes are preemptible."""
        session = self.state.session
        return self.state.requesting and session is not None and not session.evaluation_only

    @property
    def session(self) -> Optional[AnalysisSession]:
        return self.state.session

    @property
    def generation(self) -> int:
        return self.state.generation

    def is_ready(self) -> bool:
        return self.backend.is_ready()

    def is_current(self, request: AnalysisRequest) -> bool:
        return self.state.current(request.generation)

    def ensure_started(self) -> asyncio.Task:
        """Start the backend at most once at a time; concurrent callers share the attempt."""
        if self._start_task is None or self._start_task.done():
            self._start_task = asyncio.create_task(self.backend.start())
        return self._start_task

    def cancel_current(self) -> bool:
        """Abandon the in-flight request without starting another one."""
        if not self.state.requesting:
            return False
        self.backend.cancel()
        if self.state.session is not None:
            self.state.session.active = False
        self.state.generation += 1
        self.state.requesting = False
        return True

    def submit(
        self,
        position: str,
        *,
        multipv: Optional[int] = None,
        think_time_ms: Optional[int] = None,
        mode: SessionMode = SessionMode.NORMAL,
    ) -> AnalysisRequest:
        """Supersede whatever is in flight and start analysing ``position``.

        Must be called from inside the running event loop.
        """
        config = self.state.config
        superseded = self.state.session if self.state.requesting else None
        if superseded is not None:
            self.backend.cancel()
            superseded.active = False

        self.state.generation += 1
        request = AnalysisRequest(
            position=position,
            multipv=multipv or config.multipv,
            think_time_ms=think_time_ms or config.think_time_ms,
            generation=self.state.generation,
            mode=mode,
        )
        self.state.session = AnalysisSession.for_request(request)
        self.state.requesting = True

        if superseded is not None:
            self._notify(self.preemption_listeners, superseded)

        if mode is SessionMode.NORMAL:
            self.reporter.update("Analysing...", StatusKind.BUSY)
        else:
            self.reporter.debug(f"Evaluation probe #{request.generation}: {position}")

        task = asyncio.create_task(self._run(request))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        self._current_task = task
        return request

    async def wait_idle(self) -> Optional[AnalysisSession]:
        while self._current_task is not None and not self._current_task.done():
            await asyncio.wait({self._current_task})
        return self.state.session

    async def switch_backend(self, backend: AnalysisBackend) -> None:
        """Replace the backend; nothing issued to the old one can reach shared state."""
        if self.state.requesting:
            self.backend.cancel()
        previous = self.backend
        self.state.generation += 1
        self.state.session = None
        self.state.requesting = False
        self.backend = backend
        self._start_task = None
        self._remediation_shown = False
        await previous.close()

    async def close(self) -> None:
        pending = list(self._tasks)
        if self._start_task is not None and not self._start_task.done():
            pending.append(self._start_task)
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        await self.backend.close()

    async def _run(self, request: AnalysisRequest) -> None:
        attempt = 0
        try:
            if not self.backend.is_ready() and not await asyncio.shield(self.ensure_started()):
                if self.is_current(request):
                    self._fail(BackendUnavailable("Engine not ready"))
                return
            if not self.is_current(request):
                return

            while True:
                error = await self._consume(request)
                if error is None or not self.is_current(request):
                    return
                delay = self.retry_policy.delay_for(error, attempt) if self.backend.retryable else None
                if delay is None:
                    self._fail(error)
                    return
                attempt += 1
                self.reporter.update(
                    f"{error}: retry {attempt} in {round(delay * 1000)} ms",
                    StatusKind.TRANSIENT,
                )
                await self.clock.sleep(delay)
                if not self.is_current(request):
                    return
        except AssistError as exc:
            if self.is_current(request):
                self._fail(exc)
        except Exception as exc:
            if self.is_current(request):
                self._fail(BackendRequestError(f"Unexpected backend failure: {exc!r}"))
        finally:
            self._complete(request)

    async def _consume(self, request: AnalysisRequest) -> Optional[AssistError]:
        stream = self.backend.analyze(request)
        try:
            async for event in stream:
                if not self.is_current(request):
                    return None
                if isinstance(event, ErrorEvent):
                    return event.error
                self.state.session.apply(event)
        finally:
            await stream.aclose()
        return None

    def _fail(self, error: AssistError) -> None:
        session = self.state.session
        if session is not None:
            session.fail(error)
        # Out of retries: the next request re-checks the backend first.
        self.backend.mark_offline()
        self.reporter.update(f"Analysis failed: {error}", error.status_kind)
        if isinstance(error, (BackendUnavailable, BackendRequestError)):
            self._prompt_remediation()

    def _prompt_remediation(self) -> None:
        if self._remediation_shown:
            return
        self._remediation_shown = True
        hint = self.backend.remediation()
        if hint:
            self.reporter.info(hint)

    def _complete(self, request: AnalysisRequest) -> None:
        if not self.is_current(request):
            return
        # Cleared before listeners run so their own submissions are accepted.
        self.state.requesting = False
        session = self.state.session
        if session is None:
            return
        session.active = False
        if session.error is None and not session.evaluation_only:
            if session.no_legal_move:
                self.reporter.update("No legal move", StatusKind.NO_MOVE)
            elif session.finished:
                summary = summarize(session)
                suffix = f" ({summary.text})" if summary.text else ""
                self.reporter.update(f"Done!{suffix}", StatusKind.DONE)
        self._notify(self.completion_listeners, session)

    def _notify(self, listeners: List[SessionListener], session: AnalysisSession) -> None:
        for listener in list(listeners):
            try:
                listener(session)
            except Exception as exc:
                self.reporter.update(f"Listener failed: {exc!r}", StatusKind.ERROR)
