"""Structured diagnostic event logging."""

from __future__ import annotations

__all__ = ["EventLogger", "jsonl_logger", "log_event", "null_logger"]

from feed_discovery.reporting.logging import EventLogger, jsonl_logger, log_event, null_logger
