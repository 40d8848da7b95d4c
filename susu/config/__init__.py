"""Configuration module for the susu ledger service."""

from susu.config.logging import account_log_context, configure_logging, get_logger
from susu.config.settings import Settings, get_settings

__all__ = ["Settings", "get_settings", "configure_logging", "get_logger", "account_log_context"]
