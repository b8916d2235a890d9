"""Stateless analysis over a local HTTP service.

Protocol::

    GET  <base>/health   -> {"ok": bool, "engine": str?}
    POST <base>/analyze  {"fen", "movetimeMs", "multipv", "hash"}
                         -> {"ok": bool, "bestmove"?, "depth"?, "pvs"?: [...], "error"?}

``requests`` is blocking, so every call runs in a worker thread via
:func:`asyncio.to_thread`; the event loop itself never blocks.
"""

import asyncio
from typing import Any, AsyncIterator, Callable, List, Optional

import requests

from .analysis import AnalysisRequest
from .clock import SYSTEM_CLOCK, Clock
from .config import AssistConfig
from .engine_comm import AnalysisBackend
from .errors import (
    AssistError,
    BackendBusy,
    BackendRequestError,
    BackendTimeout,
    ProtocolParseAnomaly,
)
from .uci_parser import AnalysisEvent, BestMoveEvent, DepthEvent, ErrorEvent, PVEvent, ScoreEvent
from .utils import StatusKind, StatusReporter

HEALTH_PROBE_INTERVAL = 0.5
MIN_MOVETIME_MS = 50
MIN_HASH_MB = 16

HealthListener = Callable[[bool, str], None]


def normalize_server_url(url: Optional[str]) -> str:
    return (url or "").strip().rstrip("/")


def is_busy_signal(status_code: Optional[int], message: str) -> bool:
    # 429 is the structured signal; "busy" in the error text is the only other one observed.
    if status_code == 429:
        return True
    lowered = message.lower()
    return "busy" in lowered or "http 429" in lowered


def build_payload(request: AnalysisRequest, hash_mb: int) -> dict:
    return {
        "fen": request.position,
        "movetimeMs": max(MIN_MOVETIME_MS, round(request.think_time_ms)),
        "multipv": max(1, request.multipv),
        "hash": max(MIN_HASH_MB, hash_mb),
    }


def _as_int(value: Any) -> Optional[int]:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return int(value)


def result_error(result: Any) -> Optional[AssistError]:
    if not isinstance(result, dict):
        return ProtocolParseAnomaly("Analysis response is not a JSON object")
    if result.get("ok"):
        return None
    message = result.get("error") or "Local engine error"
    message = str(message)
    if is_busy_signal(None, message):
        return BackendBusy(message)
    return BackendRequestError(message)


def events_from_result(result: dict) -> List[AnalysisEvent]:
    """Translate one structured response into the event vocabulary of the line parser."""
    events: List[AnalysisEvent] = []
    top_move = None
    pvs = result.get("pvs")
    for pv in pvs if isinstance(pvs, list) else []:
        if not isinstance(pv, dict):
            continue
        raw_moves = pv.get("moves")
        moves = tuple(str(move) for move in raw_moves if move) if isinstance(raw_moves, list) else ()
        if not moves:
            continue
        rank = max(1, _as_int(pv.get("multipv")) or 1) - 1
        score_mate = _as_int(pv.get("scoreMate"))
        score_cp = _as_int(pv.get("scoreCp"))
        if score_mate is not None:
            events.append(ScoreEvent(mate=score_mate))
        elif score_cp is not None:
            events.append(ScoreEvent(centipawns=score_cp))
        pv_depth = _as_int(pv.get("depth"))
        if pv_depth is not None:
            events.append(DepthEvent(depth=pv_depth))
        events.append(PVEvent(rank=rank, moves=moves))
        if rank == 0:
            top_move = moves[0]

    depth = _as_int(result.get("depth"))
    if depth is not None:
        events.append(DepthEvent(depth=depth))

    bestmove = result.get("bestmove")
    if not isinstance(bestmove, str) or not bestmove:
        bestmove = top_move
    events.append(BestMoveEvent(move=bestmove))
    return events


class HttpBackend(AnalysisBackend):
    name = "http"
    retryable = True

    def __init__(
        self,
        config: AssistConfig,
        *,
        session: Optional[requests.Session] = None,
        reporter: Optional[StatusReporter] = None,
        clock: Clock = SYSTEM_CLOCK,
    ) -> None:
        self._config = config
        self._http = session or requests.Session()
        self._reporter = reporter or StatusReporter()
        self._clock = clock
        self._listeners: List[HealthListener] = []
        self._last_probe_at: Optional[float] = None
        self._announced: Optional[bool] = None
        self.online = False
        self.engine_name: Optional[str] = None

    @property
    def base_url(self) -> str:
        return normalize_server_url(self._config.server_url)

    def subscribe(self, listener: HealthListener) -> None:
        self._listeners.append(listener)

    def is_ready(self) -> bool:
        return self.online

    async def start(self) -> bool:
        return await self.probe_health()

    async def probe_health(self) -> bool:
        now = self._clock.monotonic()
        if self._last_probe_at is not None and now - self._last_probe_at < HEALTH_PROBE_INTERVAL:
            return self.online
        self._last_probe_at = now

        if not self.base_url:
            self._set_online(False, "Invalid URL")
            return False

        self._reporter.update("Local engine: checking...", StatusKind.BUSY)
        try:
            data = await asyncio.to_thread(self._request_json, "GET", "/health")
        except AssistError as exc:
            self._reporter.debug(f"Health check failed: {exc}")
            self._set_online(False, "Offline")
            return False

        if isinstance(data, dict) and data.get("ok"):
            self.engine_name = str(data.get("engine") or "stockfish")
            self._set_online(True, f"Online ({self.engine_name})")
        else:
            self._set_online(False, "Offline")
        return self.online

    async def analyze(self, request: AnalysisRequest) -> AsyncIterator[AnalysisEvent]:
        payload = build_payload(request, self._config.hash_mb)
        self._reporter.sending(f"POST {self.base_url}/analyze {payload}")
        try:
            result = await asyncio.to_thread(self._request_json, "POST", "/analyze", payload)
        except AssistError as exc:
            yield ErrorEvent(exc)
            return

        error = result_error(result)
        if error is not None:
            yield ErrorEvent(error)
            return
        self._reporter.received(f"{result}")
        for event in events_from_result(result):
            yield event

    def mark_offline(self) -> None:
        self._set_online(False, "Offline")

    def remediation(self) -> str:
        return f"Start the local analysis server at {self.base_url or '<unset>'} and retry"

    async def close(self) -> None:
        self._http.close()

    def _request_json(self, method: str, path: str, payload: Optional[dict] = None) -> Any:
        url = f"{self.base_url}{path}"
        try:
            response = self._http.request(
                method,
                url,
                json=payload,
                timeout=self._config.request_timeout,
            )
        except requests.exceptions.Timeout as exc:
            raise BackendTimeout("Timeout") from exc
        except requests.exceptions.RequestException as exc:
            raise BackendRequestError(f"Network error: {exc}") from exc

        if not 200 <= response.status_code < 300:
            message = f"HTTP {response.status_code}"
            detail = _error_detail(response)
            if detail:
                message = f"{message}: {detail}"
            if is_busy_signal(response.status_code, message):
                raise BackendBusy(message)
            raise BackendRequestError(message, status_code=response.status_code)

        if not response.text:
            return {}
        try:
            return response.json()
        except ValueError as exc:
            raise ProtocolParseAnomaly(f"Malformed JSON from {url}") from exc

    def _set_online(self, online: bool, detail: str) -> None:
        self.online = online
        if online:
            self._reporter.update(f"Local engine {detail.lower()}", StatusKind.READY)
        else:
            self._reporter.update(f"Local engine offline ({detail})", StatusKind.UNAVAILABLE)
        if online == self._announced:
            return
        self._announced = online
        for listener in list(self._listeners):
            listener(online, detail)


def _error_detail(response: requests.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return ""
    if isinstance(body, dict) and body.get("error"):
        return str(body["error"])
    return ""
