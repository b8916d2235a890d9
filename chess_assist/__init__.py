"""Public package interface for chess-assist."""

from .analysis import AnalysisRequest, AnalysisSession, PrincipalVariation, SessionMode
from .auto_play import AutomaticPlayController
from .config import AssistConfig, load_config, save_config
from .coordinator import RequestCoordinator, RetryPolicy
from .engine_comm import AnalysisBackend, UciBackend
from .evaluation import EvaluationSummary, summarize
from .http_backend import HttpBackend
from .main import main
from .position_feed import EvaluationFeed, SuggestionFeed
from .state import AutomaticPlayState, OrchestratorState, PlayPhase
from .uci_parser import parse_line

__all__ = [
    "AnalysisBackend",
    "AnalysisRequest",
    "AnalysisSession",
    "AssistConfig",
    "AutomaticPlayController",
    "AutomaticPlayState",
    "EvaluationFeed",
    "EvaluationSummary",
    "HttpBackend",
    "OrchestratorState",
    "PlayPhase",
    "PrincipalVariation",
    "RequestCoordinator",
    "RetryPolicy",
    "SessionMode",
    "SuggestionFeed",
    "UciBackend",
    "load_config",
    "main",
    "parse_line",
    "save_config",
    "summarize",
]
