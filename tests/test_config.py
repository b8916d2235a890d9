import json

import pytest

from chess_assist.config import AssistConfig, load_config, save_config
from chess_assist.state import AutomaticPlayState, OrchestratorState, PlayPhase


def test_defaults() -> None:
    config = AssistConfig()
    assert config.hash_mb == 1024
    assert config.multipv == 1
    assert config.think_time_ms == 2000
    assert config.server_url == "http://127.0.0.1:5050"
    assert config.request_timeout == 20.0
    assert (config.automatic_min_time, config.automatic_max_time) == (1.0, 3.0)
    assert config.evaluation_think_time_ms == 3000


def test_evaluation_think_time_has_floor() -> None:
    config = AssistConfig(evaluation_think_time=0.05)
    assert config.evaluation_think_time_ms == 200


@pytest.mark.parametrize(
    "kwargs",
    [
        {"backend": "carrier-pigeon"},
        {"player_color": "green"},
        {"automatic_color": "both"},
        {"multipv": 0},
        {"automatic_min_time": -1.0},
    ],
)
def test_invalid_values_rejected(kwargs) -> None:
    with pytest.raises(ValueError):
        AssistConfig(**kwargs)


def test_think_range_keeps_min_below_max() -> None:
    config = AssistConfig()
    config.set_min_think_time(5.0)
    assert config.automatic_max_time == 5.0
    config.set_max_think_time(2.0)
    assert config.automatic_min_time == 2.0
    config.set_think_range(4.0, 1.0)
    assert (config.automatic_min_time, config.automatic_max_time) == (4.0, 4.0)


def test_save_and_load_round_trip(tmp_path) -> None:
    config = AssistConfig(backend="http", multipv=3, engine_command=["stockfish", "--threads", "2"])
    path = save_config(config, tmp_path / "nested" / "assist.json")
    assert path.exists()
    assert load_config(path) == config


def test_load_rejects_unknown_keys(tmp_path) -> None:
    path = tmp_path / "assist.json"
    path.write_text(json.dumps({"multipv": 2, "arrows": True}), encoding="utf-8")
    with pytest.raises(ValueError, match="arrows"):
        load_config(path)


def test_load_rejects_non_object(tmp_path) -> None:
    path = tmp_path / "assist.json"
    path.write_text("[1, 2]", encoding="utf-8")
    with pytest.raises(ValueError):
        load_config(path)


def test_automatic_colour_follows_config_unless_pinned() -> None:
    config = AssistConfig(automatic_color="black")
    state = OrchestratorState(config=config)
    assert state.automatic.color_setting(config) == "black"
    config.automatic_color = "white"
    assert state.automatic.color_setting(config) == "white"
    assert AutomaticPlayState(my_color="black").color_setting(config) == "black"
    assert state.automatic.phase is PlayPhase.DISABLED
    assert state.automatic.last_action_at is None


def test_reset_cycle_clears_key_and_flag() -> None:
    play = AutomaticPlayState(waiting_for_move=True, last_key="k w", last_action_at=3.0)
    play.reset_cycle()
    assert play.waiting_for_move is False
    assert play.last_key is None
    assert play.last_action_at is None
