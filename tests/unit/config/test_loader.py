import pytest

from src.config.configuration import ChatSettings, ToolCollisionPolicy
from src.config.loader import (
    clear_config_cache,
    get_bool_env,
    get_int_env,
    get_str_env,
    load_yaml_config,
    process_dict,
)


@pytest.fixture(autouse=True)
def fresh_cache():
    clear_config_cache()
    yield
    clear_config_cache()


@pytest.mark.parametrize("value, expected", [("true", True), ("1", True), ("Yes", True), ("off", False), ("", False)])
def test_get_bool_env(monkeypatch, value, expected):
    monkeypatch.setenv("FEATURE_FLAG", value)
    assert get_bool_env("FEATURE_FLAG") is expected


def test_env_defaults(monkeypatch):
    monkeypatch.delenv("MISSING_VALUE", raising=False)
    monkeypatch.setenv("BAD_INT", "ten")
    assert get_bool_env("MISSING_VALUE", True) is True
    assert get_str_env("MISSING_VALUE", "fallback") == "fallback"
    assert get_int_env("BAD_INT", 7) == 7


def test_process_dict_resolves_env_references(monkeypatch):
    monkeypatch.setenv("CALENDAR_TOKEN", "secret")
    config = {"servers": [{"token": "$CALENDAR_TOKEN", "port": 8080}], "name": "plain", "nested": {"key": "$UNSET_X"}}
    monkeypatch.delenv("UNSET_X", raising=False)

    assert process_dict(config) == {
        "servers": [{"token": "secret", "port": 8080}],
        "name": "plain",
        "nested": {"key": "UNSET_X"},
    }


def test_load_yaml_config_missing_and_cached(tmp_path):
    assert load_yaml_config(str(tmp_path / "absent.yaml")) == {}

    path = tmp_path / "conf.yaml"
    path.write_text("MCP_SERVERS: []\n", encoding="utf-8")
    first = load_yaml_config(str(path))
    path.write_text("MCP_SERVERS: [{url: http://changed}]\n", encoding="utf-8")

    assert load_yaml_config(str(path)) is first
    clear_config_cache()
    assert load_yaml_config(str(path))["MCP_SERVERS"] == [{"url": "http://changed"}]


def test_chat_settings_from_env(monkeypatch):
    monkeypatch.setenv("CHAT_MAX_STEPS", "0")
    monkeypatch.setenv("TOOL_COLLISION_POLICY", "FIRST")
    monkeypatch.setenv("SMOOTH_STREAM_DELAY_MS", "15")

    settings = ChatSettings.from_env()

    assert settings.max_steps == 1
    assert settings.tool_collision_policy == ToolCollisionPolicy.FIRST_WRITE_WINS
    assert settings.smooth_stream_delay_ms == 15
    assert settings.premium_license_header == "x-hyprnote-license-key"


def test_unknown_collision_policy_falls_back(monkeypatch):
    monkeypatch.setenv("TOOL_COLLISION_POLICY", "random")
    assert ChatSettings.from_env().tool_collision_policy == ToolCollisionPolicy.LAST_WRITE_WINS
