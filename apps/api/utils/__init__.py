"""Shared utilities for the Tiebreak API."""

from utils.json_extraction import extract_json_from_response
from utils.logging import configure_logging, get_logger

__all__ = [
    "configure_logging",
    "extract_json_from_response",
    "get_logger",
]
