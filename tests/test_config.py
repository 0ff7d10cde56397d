import pytest

from gridbot.core.config import Config, ConfigError, get_pair, get_risk_profile


def write_config(tmp_path, body):
    path = tmp_path / "config.yaml"
    path.write_text(body)
    return path


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    monkeypatch.delenv("DEFAULT_RISK_PROFILE", raising=False)
    monkeypatch.delenv("PAPER_TRADE_MODE", raising=False)


def test_profiles_are_strictly_ordered():
    low, medium, high = (get_risk_profile(k) for k in ("low", "medium", "high"))
    assert low.max_drawdown_pct < medium.max_drawdown_pct < high.max_drawdown_pct
    assert low.max_position_pct < medium.max_position_pct < high.max_position_pct
    assert low.name == "Conservative"


def test_unknown_profile_and_pair():
    with pytest.raises(ConfigError):
        get_risk_profile("yolo")
    with pytest.raises(ConfigError):
        get_pair("DOGE/USDC")
    assert get_pair("SOL/USDC").quote.symbol == "USDC"


def test_yaml_is_typed(tmp_path):
    path = write_config(tmp_path, (
        "system:\n"
        "  risk_profile: high\n"
        "  paper_trade_mode: true\n"
        "grid:\n"
        "  grid_levels: 4\n"
        "  grid_spacing_pct: 0.8\n"
        "strategy:\n"
        "  mode: grid\n"
        "  active_indicators: [rsi, ema]\n"
        "data:\n"
        "  candle_window: 60\n"
    ))
    bot = Config(path).bot_config()
    assert bot.grid.grid_levels == 4
    assert bot.strategy.mode == "grid"
    assert bot.strategy.active_indicators == ["rsi", "ema"]
    assert bot.profile.name == "Aggressive"
    assert bot.candle_window == 60
    assert bot.fee_bps == 25


def test_environment_overrides_yaml(tmp_path, monkeypatch):
    path = write_config(tmp_path, "system:\n  risk_profile: low\n  paper_trade_mode: true\n")
    monkeypatch.setenv("DEFAULT_RISK_PROFILE", "medium")
    monkeypatch.setenv("PAPER_TRADE_MODE", "false")
    bot = Config(path).bot_config()
    assert bot.risk_profile == "medium"
    assert bot.paper_trade_mode is False


def test_unknown_profile_in_yaml_is_fatal(tmp_path):
    path = write_config(tmp_path, "system:\n  risk_profile: extreme\n")
    with pytest.raises(ConfigError):
        Config(path).bot_config()


def test_invalid_values_are_fatal(tmp_path):
    path = write_config(tmp_path, "grid:\n  grid_levels: 0\n")
    with pytest.raises(ConfigError):
        Config(path).bot_config()


def test_missing_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        Config(tmp_path / "absent.yaml")


def test_shipped_config_loads():
    bot = Config().bot_config()
    assert bot.grid.pair == "SOL/USDC"
    assert len(bot.strategy.active_indicators) == 11
