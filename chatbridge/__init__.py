"""chatbridge — stream an AI coding-assistant CLI into a chat."""

__version__ = "0.1.0"
