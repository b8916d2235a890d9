import sys
from enum import Enum, IntEnum
from typing import Callable, List, Optional, TextIO


class ReportingLevel(IntEnum):
    QUIET = 0
    BASIC = 1
    VERBOSE = 2


class StatusKind(Enum):
    """Taxonomy class of the latest status line."""

    IDLE = "idle"
    BUSY = "busy"
    READY = "ready"
    DONE = "done"
    NO_MOVE = "no-move"
    UNAVAILABLE = "unavailable"
    TRANSIENT = "transient"
    PARSE_ANOMALY = "parse-anomaly"
    ERROR = "error"


def color_text(text, color_code):
    return f"\033[{color_code}m{text}\033[0m"

def debug_text(text):
    return f"{color_text('DEBUG', '31')} {text}"

def info_text(text):
    return f"{color_text('INFO', '34')}  {text}"

def error_text(text):
    return f"{color_text('ERROR', '91')} {text}"

def sending_text(text):
    return f"{color_text('SENDING  ', '32')} {text}"

def recieved_text(text):
    return f"{color_text('RECIEVED ', '35')} {text}"


StatusListener = Callable[[str, StatusKind], None]


class StatusReporter:
    """Persistent status line plus console reporting.

    Components publish through :meth:`update`; the latest text and its
    :class:`StatusKind` stay readable until the next update. Protocol traffic
    is only printed at :attr:`ReportingLevel.VERBOSE`.
    """

    def __init__(
        self,
        level: ReportingLevel = ReportingLevel.BASIC,
        *,
        stream: Optional[TextIO] = None,
    ) -> None:
        self.level = level
        self._stream = stream
        self.text = ""
        self.kind = StatusKind.IDLE
        self._listeners: List[StatusListener] = []

    def subscribe(self, listener: StatusListener) -> None:
        self._listeners.append(listener)

    def update(self, text: str, kind: StatusKind = StatusKind.BUSY) -> None:
        self.text = text
        self.kind = kind
        for listener in list(self._listeners):
            listener(text, kind)
        if kind in (StatusKind.UNAVAILABLE, StatusKind.ERROR):
            self._emit(error_text(text), ReportingLevel.BASIC)
        else:
            self._emit(info_text(text), ReportingLevel.BASIC)

    def info(self, text: str) -> None:
        self._emit(info_text(text), ReportingLevel.BASIC)

    def debug(self, text: str) -> None:
        self._emit(debug_text(text), ReportingLevel.VERBOSE)

    def sending(self, text: str) -> None:
        self._emit(sending_text(text), ReportingLevel.VERBOSE)

    def received(self, text: str) -> None:
        self._emit(recieved_text(text), ReportingLevel.VERBOSE)

    def _emit(self, line: str, minimum: ReportingLevel) -> None:
        if self.level < minimum:
            return
        print(line, file=self._stream or sys.stdout)
