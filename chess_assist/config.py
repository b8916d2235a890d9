import json
from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import List, Union

DEFAULT_SERVER_URL = "http://127.0.0.1:5050"
COLOR_SETTINGS = ("auto", "white", "black")


@dataclass
class AssistConfig:
    """Runtime-mutable settings shared by every component."""

    enabled: bool = True
    auto_suggest: bool = False
    auto_move: bool = False
    player_color: str = "auto"
    multipv: int = 1
    think_time: float = 2.0
    hash_mb: int = 1024
    backend: str = "uci"
    engine_command: List[str] = field(default_factory=lambda: ["stockfish"])
    server_url: str = DEFAULT_SERVER_URL
    request_timeout_ms: int = 20000
    automatic: bool = False
    automatic_color: str = "auto"
    automatic_min_time: float = 1.0
    automatic_max_time: float = 3.0
    evaluation_enabled: bool = False
    evaluation_think_time: float = 3.0
    debug: bool = False

    def __post_init__(self) -> None:
        if self.backend not in ("uci", "http"):
            raise ValueError(f"Unknown backend: {self.backend!r}")
        for name in ("player_color", "automatic_color"):
            if getattr(self, name) not in COLOR_SETTINGS:
                raise ValueError(f"{name} must be one of {COLOR_SETTINGS}")
        if self.multipv < 1:
            raise ValueError("multipv must be at least 1")
        self.set_think_range(self.automatic_min_time, self.automatic_max_time)

    @property
    def think_time_ms(self) -> int:
        return max(1, round(self.think_time * 1000))

    @property
    def evaluation_think_time_ms(self) -> int:
        return max(200, round(self.evaluation_think_time * 1000))

    @property
    def request_timeout(self) -> float:
        return self.request_timeout_ms / 1000.0

    def set_think_range(self, minimum: float, maximum: float) -> None:
        if minimum < 0 or maximum < 0:
            raise ValueError("think times must not be negative")
        self.automatic_min_time = minimum
        self.automatic_max_time = maximum
        if self.automatic_min_time > self.automatic_max_time:
            self.automatic_max_time = self.automatic_min_time

    def set_min_think_time(self, seconds: float) -> None:
        self.automatic_min_time = seconds
        if self.automatic_min_time > self.automatic_max_time:
            self.automatic_max_time = self.automatic_min_time

    def set_max_think_time(self, seconds: float) -> None:
        self.automatic_max_time = seconds
        if self.automatic_max_time < self.automatic_min_time:
            self.automatic_min_time = self.automatic_max_time

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "AssistConfig":
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise ValueError(f"Unknown config keys: {', '.join(unknown)}")
        return cls(**data)


def load_config(path: Union[Path, str]) -> AssistConfig:
    with Path(path).open("r", encoding="utf-8") as config_file:
        data = json.load(config_file)
    if not isinstance(data, dict):
        raise ValueError(f"Config file must contain a JSON object: {path}")
    return AssistConfig.from_dict(data)


def save_config(config: AssistConfig, path: Union[Path, str]) -> Path:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w", encoding="utf-8") as config_file:
        json.dump(config.to_dict(), config_file, indent=2)
        config_file.write("\n")
    return path
