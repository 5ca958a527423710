"""Long-polling Telegram update dispatch with per-chat dialogue state machines."""

__version__ = "0.1.0"
