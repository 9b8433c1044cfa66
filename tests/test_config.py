import logging

from config import AgentConfig, get_state_file, load_agent_config, update_config


def test_update_config_coerces_and_skips_unknown(caplog):
    cfg = AgentConfig()

    with caplog.at_level(logging.WARNING):
        update_config(
            cfg,
            {
                "max_positions": "8",
                "take_profit_pct": "12.5",
                "options_enabled": "true",
                "crypto_symbols": "BTC/USD, DOGE/USD",
                "bogus": 1,
                "stop_loss_pct": "steep",
            },
        )

    assert cfg.max_positions == 8
    assert cfg.take_profit_pct == 12.5
    assert cfg.options_enabled is True
    assert cfg.crypto_symbols == ["BTC/USD", "DOGE/USD"]
    assert cfg.stop_loss_pct == 5.0
    assert "Ignoring unknown config key bogus" in caplog.text
    assert "Ignoring invalid value for stop_loss_pct" in caplog.text


def test_environment_overrides(monkeypatch):
    monkeypatch.setenv("AGENT_MAX_POSITIONS", "3")
    monkeypatch.setenv("AGENT_CRYPTO_ENABLED", "yes")
    monkeypatch.setenv("AGENT_MIN_SENTIMENT_SCORE", "0.45")
    monkeypatch.setenv("AGENT_CRYPTO_SYMBOLS", "ETH/USD")
    monkeypatch.setenv("RESEARCH_LLM_MODEL", "llama-3.3-70b-versatile")

    cfg = load_agent_config()

    assert cfg.max_positions == 3
    assert cfg.crypto_enabled is True
    assert cfg.min_sentiment_score == 0.45
    assert cfg.crypto_symbols == ["ETH/USD"]
    assert cfg.llm_model == "llama-3.3-70b-versatile"


def test_invalid_environment_values_fall_back(monkeypatch):
    monkeypatch.setenv("AGENT_MAX_POSITIONS", "lots")
    monkeypatch.setenv("AGENT_OPTIONS_ENABLED", "maybe")

    cfg = load_agent_config()

    assert cfg.max_positions == 5
    assert cfg.options_enabled is False


def test_state_file_strips_inline_comment(monkeypatch):
    monkeypatch.setenv("AGENT_STATE_FILE", "/tmp/agent.json  # local override")
    assert get_state_file() == "/tmp/agent.json"
