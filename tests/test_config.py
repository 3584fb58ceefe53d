"""
Tests for environment-driven configuration.
"""

from unittest.mock import patch

from timeflow.core import config


def test_defaults_are_valid():
    assert config.validate_config() == []


def test_invalid_values_reported():
    with patch.object(config, "EXTRACTOR_PROVIDER", "gpt"), \
            patch.object(config, "DEGENERATE_SPAN_POLICY", "ignore"), \
            patch.object(config, "MAX_TOOL_CALLS", -1), \
            patch.object(config, "DEFAULT_EVENT_MINUTES", 0):
        issues = config.validate_config()

    assert len(issues) == 4
    assert "Invalid EXTRACTOR_PROVIDER: gpt" in issues


def test_force_rule_based_overrides_provider():
    with patch.object(config, "EXTRACTOR_FORCE_RULE_BASED", True), \
            patch.object(config, "EXTRACTOR_PROVIDER", "ollama"):
        assert config.get_extractor_provider() == "rule_based"


def test_db_path_read_from_environment(monkeypatch):
    monkeypatch.setenv("DB_PATH", "/tmp/elsewhere.db")
    assert config.get_db_path() == "/tmp/elsewhere.db"


def test_unknown_degenerate_policy_falls_back_to_reject():
    with patch.object(config, "DEGENERATE_SPAN_POLICY", "ignore"):
        assert config.get_degenerate_span_policy() == "reject"
    with patch.object(config, "DEGENERATE_SPAN_POLICY", "coerce"):
        assert config.get_degenerate_span_policy() == "coerce"
