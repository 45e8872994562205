"""
Logging configuration for the returnsync worker.

In Cloud Run, logs go to Google Cloud Logging. Locally, records are written
to stdout and any ``json_fields`` passed through ``extra`` are appended.

Either way, token values inside ``json_fields`` are masked before a handler
formats the record, and chatty client libraries are held at WARNING.
"""

import json
import logging
import os
import sys
from typing import Any

# Keys whose values never reach a log sink
SECRET_FIELDS = frozenset(
    {"access_token", "refresh_token", "id_token", "code", "authorization"}
)
REDACTED = "[redacted]"

# Client library loggers held at WARNING or above
NOISY_LOGGERS = ("urllib3", "google.auth", "google.api_core", "httpx")

_logging_configured = False


def redact(fields: Any) -> Any:
    """Copy of ``fields`` with every secret-named value masked, at any depth."""
    if isinstance(fields, dict):
        return {
            key: REDACTED if str(key).lower() in SECRET_FIELDS else redact(value)
            for key, value in fields.items()
        }
    if isinstance(fields, (list, tuple)):
        return [redact(value) for value in fields]
    return fields


def resolve_level(level: int | str) -> int:
    """Numeric level for ``level``; unknown names fall back to INFO."""
    if isinstance(level, int):
        return level
    resolved = logging.getLevelName(level.strip().upper())
    return resolved if isinstance(resolved, int) else logging.INFO


class RedactingFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        json_fields = getattr(record, "json_fields", None)
        if json_fields:
            record.json_fields = redact(json_fields)
        return True


class LocalFormatter(logging.Formatter):
    """Appends a record's json_fields as indented JSON."""

    def format(self, record: logging.LogRecord) -> str:
        message = super().format(record)

        json_fields = getattr(record, "json_fields", None)
        if json_fields:
            fields_str = json.dumps(json_fields, indent=2, default=str, sort_keys=True)
            message = f"{message}\n{fields_str}"

        return message


def setup_logging(service_name: str = "returnsync", level: int | str | None = None):
    """
    Configure logging once per process.

    Args:
        service_name: Name of the service for log identification
        level: Root log level, ``LOG_LEVEL`` from the environment by default
    """
    global _logging_configured

    if _logging_configured:
        return

    if level is None:
        level = os.getenv("LOG_LEVEL", "INFO")
    resolved = resolve_level(level)
    if os.getenv("K_SERVICE"):
        _setup_cloud_logging(service_name, resolved)
    else:
        _setup_local_logging(resolved)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(resolved, logging.WARNING))

    _logging_configured = True


def _setup_cloud_logging(service_name: str, level: int):
    """Configure logging for Cloud Run using google-cloud-logging."""
    try:
        import google.cloud.logging

        client = google.cloud.logging.Client()
        client.setup_logging(log_level=level)
        for handler in logging.getLogger().handlers:
            handler.addFilter(RedactingFilter())

        logging.info("Cloud Logging configured for service: %s", service_name)
    except Exception as e:
        # Fall back to local logging if Cloud Logging setup fails
        _setup_local_logging(level)
        logging.warning("Failed to setup Cloud Logging, using local logging: %s", e)


def _setup_local_logging(level: int) -> logging.Handler:
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        LocalFormatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
    )
    handler.addFilter(RedactingFilter())

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.addHandler(handler)
    return handler
