import pytest

from chatcore.config.config_manager import ConfigManager, deep_merge, parse_fallbacks


def test_defaults_without_environment():
    manager = ConfigManager(environ={})
    config = manager.get_active_config()

    assert config["retry_settings"] == {"max_attempts": 3, "base_delay_ms": 1000, "jitter_ms": 1000}
    assert config["fallback_candidates"] == [
        ["google", "gemini-1.5-flash"],
        ["anthropic", "claude-3-5-haiku-20241022"],
    ]
    assert not any(manager.has_credentials(p) for p in ("openai", "anthropic", "google"))
    # Rate limiting is wired from the environment when the app module loads
    assert "rate_limit_settings" not in config


def test_credentials_and_api_base_from_environment():
    manager = ConfigManager(environ={
        "OPENAI_API_KEY": "sk-env",
        "GOOGLE_GENERATIVE_AI_API_KEY": "  ",
        "ANTHROPIC_API_BASE": "http://proxy.local/v1",
    })

    assert manager.has_credentials("openai")
    assert not manager.has_credentials("google")
    assert manager.provider_settings("openai")["api_key"] == "sk-env"
    assert manager.provider_settings("anthropic")["api_base"] == "http://proxy.local/v1"


def test_scalar_env_overrides_are_cast():
    manager = ConfigManager(environ={
        "CHATCORE_RETRY_MAX_ATTEMPTS": "5",
        "CHATCORE_REQUEST_DEADLINE_S": "7.5",
        "CHATCORE_STREAM_MODE": "synthesized",
        "CHATCORE_INDEXING_ENABLED": "no",
    })

    assert manager.get_section("retry_settings")["max_attempts"] == 5
    assert manager.get_section("generation_settings")["request_deadline_s"] == 7.5
    assert manager.get_section("stream_settings")["mode"] == "synthesized"
    assert manager.get_section("indexing_settings")["enabled"] is False


def test_invalid_env_value_is_ignored():
    manager = ConfigManager(environ={"CHATCORE_RETRY_MAX_ATTEMPTS": "many"})
    assert manager.get_section("retry_settings")["max_attempts"] == 3


def test_fallbacks_from_environment():
    manager = ConfigManager(environ={"CHATCORE_FALLBACKS": "anthropic:claude-3-opus-20240229, google:gemini-pro"})
    assert manager.get_active_config()["fallback_candidates"] == [
        ["anthropic", "claude-3-opus-20240229"],
        ["google", "gemini-pro"],
    ]


def test_malformed_fallbacks_keep_defaults():
    manager = ConfigManager(environ={"CHATCORE_FALLBACKS": "google"})
    assert manager.get_active_config()["fallback_candidates"][0] == ["google", "gemini-1.5-flash"]


def test_from_mapping_ignores_process_environment(monkeypatch):
    monkeypatch.setenv("OPENAI_API_KEY", "sk-from-process")
    manager = ConfigManager.from_mapping({
        "providers": {"anthropic": {"api_key": "sk-ant-mapping"}},
        "retry_settings": {"max_attempts": 1},
    })

    assert not manager.has_credentials("openai")
    assert manager.has_credentials("anthropic")
    retry = manager.get_section("retry_settings")
    assert retry["max_attempts"] == 1
    assert retry["base_delay_ms"] == 1000


def test_active_config_is_read_only():
    config = ConfigManager(environ={}).get_active_config()
    with pytest.raises(TypeError):
        config["retry_settings"] = {}


def test_get_section_returns_a_copy():
    manager = ConfigManager(environ={})
    manager.get_section("retry_settings")["max_attempts"] = 99
    assert manager.get_section("retry_settings")["max_attempts"] == 3


def test_deep_merge_nested():
    base = {"a": {"b": 1, "c": 2}, "d": [1]}
    merged = deep_merge(base, {"a": {"c": 3}, "d": [2]})
    assert merged == {"a": {"b": 1, "c": 3}, "d": [2]}
    assert base["a"]["c"] == 2


def test_parse_fallbacks_rejects_missing_model():
    assert parse_fallbacks("openai:gpt-4o,") == [["openai", "gpt-4o"]]
    with pytest.raises(ValueError):
        parse_fallbacks("openai:")
