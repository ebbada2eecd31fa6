from pathlib import Path

import pytest

from pumpsignal.config import ConfigError, EngineConfig, load_config, validate_config
from pumpsignal.paths import default_config_path


def test_defaults_match_documented_thresholds():
    cfg = EngineConfig()
    assert cfg.entry.min_score == 18
    assert (cfg.entry.min_token_age, cfg.entry.max_token_age) == (120, 720)
    assert (cfg.exit.partial_exit_pct, cfg.exit.full_exit_pct) == (120, 220)
    assert cfg.kill_switch.whale_buy_threshold == 3.0
    assert cfg.filters.max_largest_buy == 2.0
    assert cfg.runtime.health_port == 3000


def test_partial_threshold_must_be_below_full():
    with pytest.raises(ConfigError, match="partial_exit_pct"):
        validate_config({"exit": {"partial_exit_pct": 250, "full_exit_pct": 220}})


def test_retention_must_cover_windows():
    with pytest.raises(ConfigError, match="retention"):
        validate_config({"windows": {"retention": 100}})


def test_unknown_keys_are_rejected():
    with pytest.raises(ConfigError):
        validate_config({"entry": {"min_scor": 10}})


def test_config_is_immutable():
    cfg = EngineConfig()
    with pytest.raises(Exception):
        cfg.entry.min_score = 1


def test_load_config_toml(tmp_path):
    path = tmp_path / "engine.toml"
    path.write_text(
        "[entry]\n"
        "min_score = 20\n"
        "[exit]\n"
        "partial_exit_fraction = 40\n"
        "[runtime]\n"
        'log_dir = "/tmp/pumpsignal-logs"\n'
    )
    cfg = load_config(path, env={})
    assert cfg.entry.min_score == 20
    assert cfg.exit.partial_exit_fraction == 40
    assert cfg.runtime.log_dir == Path("/tmp/pumpsignal-logs")


def test_env_overrides_file(tmp_path):
    path = tmp_path / "engine.toml"
    path.write_text('[runtime]\nhealth_port = 8000\nrpc_ws_url = "wss://file"\n')
    cfg = load_config(path, env={"PORT": "9100", "SOLANA_RPC_WS": "wss://env", "LOG_DIR": " "})
    assert cfg.runtime.health_port == 9100
    assert cfg.runtime.rpc_ws_url == "wss://env"


def test_missing_and_invalid_files(tmp_path):
    with pytest.raises(ConfigError, match="not found"):
        load_config(tmp_path / "nope.toml", env={})
    bad = tmp_path / "bad.toml"
    bad.write_text("[entry\n")
    with pytest.raises(ConfigError, match="invalid TOML"):
        load_config(bad, env={})


def test_bad_env_value_is_a_config_error():
    with pytest.raises(ConfigError):
        load_config(None, env={"HEALTH_PORT": "not-a-port"})


def test_config_path_from_environment(tmp_path):
    path = tmp_path / "custom.toml"
    path.write_text("[entry]\nmin_score = 31\n")
    cfg = load_config(env={"PUMPSIGNAL_CONFIG": str(path)})
    assert cfg.entry.min_score == 31


def test_default_config_path_prefers_env_then_cwd(tmp_path):
    assert default_config_path({}, cwd=tmp_path) is None
    (tmp_path / "pumpsignal.toml").write_text("")
    assert default_config_path({}, cwd=tmp_path) == tmp_path / "pumpsignal.toml"
    assert default_config_path({"PUMPSIGNAL_CONFIG": "/etc/ps.toml"}, cwd=tmp_path) == Path("/etc/ps.toml")
