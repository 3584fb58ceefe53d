"""
Runtime configuration for the TimeFlow resolution service.
All values come from environment variables so deployments and tests can
override them without touching code.
"""

import os
from pathlib import Path

# Event/tag store
DB_PATH = os.getenv("DB_PATH", "./data/timeflow.db")

DEBUG = os.getenv("DEBUG", "true").lower() == "true"

# Extraction capability selection
EXTRACTOR_PROVIDER = os.getenv("EXTRACTOR_PROVIDER", "ollama")  # ollama|rule_based
EXTRACTOR_FORCE_RULE_BASED = os.getenv("EXTRACTOR_FORCE_RULE_BASED", "false").lower() == "true"

OLLAMA_MODEL = os.getenv("OLLAMA_MODEL", "llama3.1:8b")
OLLAMA_HOST = os.getenv("OLLAMA_HOST", "http://127.0.0.1:11434")
OLLAMA_TEMPERATURE = float(os.getenv("OLLAMA_TEMPERATURE", "0.0"))

# Resolution limits and caller policy
MAX_TOOL_CALLS = int(os.getenv("MAX_TOOL_CALLS", "3"))
DEGENERATE_SPAN_POLICY = os.getenv("DEGENERATE_SPAN_POLICY", "coerce")  # reject|coerce
DEFAULT_EVENT_MINUTES = int(os.getenv("DEFAULT_EVENT_MINUTES", "60"))
DEFAULT_TIMEZONE = os.getenv("DEFAULT_TIMEZONE", "UTC")

VERSION = "0.3.0"


def debug_enabled():
    """Check if debug mode is enabled."""
    return os.getenv("DEBUG", "true").lower() == "true"


def get_db_path() -> str:
    """Database path, re-read so tests can point at a temporary file."""
    return os.getenv("DB_PATH", DB_PATH)


def ensure_db_directory():
    """Ensure the database directory exists."""
    Path(get_db_path()).parent.mkdir(parents=True, exist_ok=True)


def get_extractor_provider():
    """Get configured extractor provider (ollama|rule_based)."""
    if EXTRACTOR_FORCE_RULE_BASED:
        return "rule_based"
    return EXTRACTOR_PROVIDER


def get_max_tool_calls():
    """Get the cap on tool calls per resolution."""
    return MAX_TOOL_CALLS


def get_degenerate_span_policy():
    """Get degenerate span policy (reject|coerce). Unknown values fall back to reject."""
    if DEGENERATE_SPAN_POLICY not in ("reject", "coerce"):
        return "reject"
    return DEGENERATE_SPAN_POLICY


def validate_config():
    """Validate configuration and return any issues."""
    issues = []

    if EXTRACTOR_PROVIDER not in ["ollama", "rule_based"]:
        issues.append(f"Invalid EXTRACTOR_PROVIDER: {EXTRACTOR_PROVIDER}")

    if DEGENERATE_SPAN_POLICY not in ["reject", "coerce"]:
        issues.append(f"Invalid DEGENERATE_SPAN_POLICY: {DEGENERATE_SPAN_POLICY} (using reject)")

    if MAX_TOOL_CALLS < 0:
        issues.append("MAX_TOOL_CALLS must be >= 0")

    if DEFAULT_EVENT_MINUTES < 1:
        issues.append("DEFAULT_EVENT_MINUTES must be >= 1")

    return issues
