"""Configuration constants.

Centralizes magic numbers and default values shared across modules.
Runtime settings (host, store backend, log level) come from environment
variables, see ``ollachat.cli.providers``.
"""


class LogLevel:
    """Log level constants with numeric values for comparison.

    Standard logging hierarchy: DEBUG < INFO < WARNING < ERROR
    Lower numeric value = more verbose (shows more messages).
    """

    DEBUG = 10
    INFO = 20
    WARNING = 30
    ERROR = 40

    _names = {
        DEBUG: "DEBUG",
        INFO: "INFO",
        WARNING: "WARNING",
        ERROR: "ERROR",
    }

    _from_string = {
        "debug": DEBUG,
        "info": INFO,
        "warning": WARNING,
        "error": ERROR,
    }

    @classmethod
    def name(cls, level: int) -> str:
        """Get the name for a log level."""
        return cls._names.get(level, "UNKNOWN")

    @classmethod
    def from_string(cls, level_str: str) -> int:
        """Convert string to log level. Returns WARNING if invalid."""
        return cls._from_string.get(level_str.lower(), cls.WARNING)


# Inference server
DEFAULT_OLLAMA_HOST = "http://localhost:11434"
CONNECT_TIMEOUT_SECONDS = 10.0
CATALOG_TIMEOUT_SECONDS = 30.0  # /api/tags and health checks

# Persistence
DEFAULT_STORE_KEY = "savedConversations"
DEFAULT_STORE_DIR = "~/.ollachat"

# Conversation display
DEFAULT_CONVERSATION_TITLE = "New Chat"
TITLE_PREVIEW_LENGTH = 40  # Characters of the first user message used as a title

# Reasoning segment sentinels emitted by "thinking" models
THINK_START = "<think>"
THINK_END = "</think>"

# Role label echoed by some models at the start of a reply
ASSISTANT_ECHO_PREFIX = "assistant:"
