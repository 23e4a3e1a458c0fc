"""
JSON log lines for every component, one object per record.

``setup_logging`` attaches a single stdout handler to the root logger and
lets OpenTelemetry stamp ``otelTraceID``/``otelSpanID`` on each record,
so a slot's log lines can be matched to its "persist slot" span::

    setup_logging("INFO", service="tx-aggregator")
    logging.getLogger("aggregator").info("Slot %d persisted", slot)
"""

import logging

from opentelemetry.instrumentation.logging import LoggingInstrumentor
from pythonjsonlogger.json import JsonFormatter

LOG_FORMAT = "%(timestamp)s %(level)s %(name)s %(message)s"

_configured = False


class JsonTraceFormatter(JsonFormatter):
    """``JsonFormatter`` with fixed ``timestamp``/``level``/``logger``/``message`` keys.

    Args:
        service: When given, added to every line as ``service``.
    """

    def __init__(self, *args, service: str | None = None, **kwargs):
        super().__init__(*args, **kwargs)
        self.service = service

    def add_fields(self, log_record, record, message_dict):
        super().add_fields(log_record, record, message_dict)
        log_record.update(
            timestamp=record.created,
            level=record.levelname,
            logger=record.name,
            message=record.getMessage(),
        )
        if self.service:
            log_record["service"] = self.service


def _coerce_level(level: int | str) -> int:
    if isinstance(level, int):
        return level
    resolved = logging.getLevelName(level.strip().upper())
    if not isinstance(resolved, int):
        raise ValueError(f"Unknown log level: {level!r}")
    return resolved


def setup_logging(level: int | str = logging.INFO, service: str | None = None) -> None:
    """Install the JSON handler on the root logger; later calls do nothing.

    Args:
        level: ``logging`` constant or level name such as ``"DEBUG"``.
        service: Service name written on every line.

    Raises:
        ValueError: ``level`` is not a known level name.
    """
    global _configured
    if _configured:
        return
    _configured = True

    LoggingInstrumentor().instrument(set_logging_format=False)

    root = logging.getLogger()
    root.setLevel(_coerce_level(level))
    stream = logging.StreamHandler()
    stream.setFormatter(JsonTraceFormatter(LOG_FORMAT, service=service))
    root.addHandler(stream)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)
