"""
Structured logging for the memory engine.

Every line carries the id and action of the engine request that emitted
it, taken from the active RequestContext, plus keyword attributes such
as memory ids and cache keys. Lines are JSON by default, or a compact
key=value text form for terminals.
"""

import json
import logging
import sys
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, TextIO

from .context import ContextManager


ROOT_LOGGER_NAME = "zeo_memory"

# Same layout as stored memory timestamps
_TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%S.%fZ"

# Attribute name used to carry keyword attributes on a logging.LogRecord
_ATTRIBUTES_FIELD = "zeo_attributes"


class LogLevel(str, Enum):
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"
    
    @property
    def levelno(self) -> int:
        """Numeric level understood by the logging module."""
        return logging.getLevelName(self.value)


@dataclass
class LogEvent:
    """One engine log line before rendering."""
    
    level: str
    message: str
    logger: str
    created: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    request_id: Optional[str] = None
    action: Optional[str] = None
    attributes: Dict[str, Any] = field(default_factory=dict)
    traceback: Optional[str] = None
    
    @property
    def timestamp(self) -> str:
        return self.created.strftime(_TIMESTAMP_FORMAT)
    
    def as_json(self) -> str:
        payload: Dict[str, Any] = {
            "timestamp": self.timestamp,
            "level": self.level,
            "logger": self.logger,
            "message": self.message,
        }
        for key in ("request_id", "action"):
            value = getattr(self, key)
            if value:
                payload[key] = value
        if self.attributes:
            payload["attributes"] = self.attributes
        if self.traceback:
            payload["exception"] = self.traceback
        return json.dumps(payload, default=str)
    
    def as_text(self) -> str:
        """
        Render as a single terminal line.
        
        Format: ``<timestamp> <LEVEL> <logger>: <message> k=v ... request=<id8>``
        with any traceback on the following lines.
        """
        fields: List[str] = [f"{key}={value}" for key, value in self.attributes.items()]
        if self.action:
            fields.append(f"action={self.action}")
        if self.request_id:
            fields.append(f"request={self.request_id[:8]}")
        
        line = f"{self.timestamp} {self.level} {self.logger}: {self.message}"
        if fields:
            line = f"{line} {' '.join(fields)}"
        if self.traceback:
            line = f"{line}\n{self.traceback}"
        return line


class StructuredFormatter(logging.Formatter):
    """Formats records as LogEvent lines tagged with the request context."""
    
    def __init__(self, json_output: bool = True):
        super().__init__()
        self.json_output = json_output
    
    def format(self, record: logging.LogRecord) -> str:
        context = ContextManager.get_current()
        event = LogEvent(
            level=record.levelname,
            message=record.getMessage(),
            logger=record.name,
            created=datetime.fromtimestamp(record.created, tz=timezone.utc),
            request_id=context.request_id if context else None,
            action=context.action if context else None,
            attributes=dict(getattr(record, _ATTRIBUTES_FIELD, {})),
            traceback=self.formatException(record.exc_info) if record.exc_info else None,
        )
        return event.as_json() if self.json_output else event.as_text()


class StructuredLogger:
    """
    Logger that takes keyword attributes instead of format arguments.
    
    Usage:
        logger = StructuredLogger(__name__)
        
        logger.info("Memory stored", memory_id="mem_1", session_id="default")
        logger.warning("Cache write failed", exception=e, key="recent_memory:mem_1")
    
    Records go through the standard ``logging`` tree, so a plain
    ``logging.getLogger(__name__)`` in the same package ends up on the
    same handler.
    """
    
    def __init__(self, name: str = ROOT_LOGGER_NAME):
        self.name = name
        self._logger = logging.getLogger(name)
    
    def _emit(
        self,
        level: LogLevel,
        message: str,
        exception: Optional[BaseException],
        attributes: Dict[str, Any],
    ) -> None:
        if not self._logger.isEnabledFor(level.levelno):
            return
        exc_info = (type(exception), exception, exception.__traceback__) if exception else None
        self._logger.log(
            level.levelno,
            message,
            exc_info=exc_info,
            extra={_ATTRIBUTES_FIELD: attributes},
        )
    
    def debug(self, message: str, **attributes) -> None:
        self._emit(LogLevel.DEBUG, message, None, attributes)
    
    def info(self, message: str, **attributes) -> None:
        self._emit(LogLevel.INFO, message, None, attributes)
    
    def warning(self, message: str, exception: Optional[BaseException] = None, **attributes) -> None:
        self._emit(LogLevel.WARNING, message, exception, attributes)
    
    def error(self, message: str, exception: Optional[BaseException] = None, **attributes) -> None:
        self._emit(LogLevel.ERROR, message, exception, attributes)


def configure_logging(
    level: LogLevel = LogLevel.INFO,
    json_output: bool = True,
    output: Optional[TextIO] = None,
) -> logging.Logger:
    """
    Send everything under the ``zeo_memory`` logger to one structured handler.
    
    A previously installed structured handler is replaced, so calling
    this twice does not duplicate lines.
    
    Args:
        level: Minimum level to emit
        json_output: JSON lines when True, text lines otherwise
        output: Stream to write to, stderr by default
    
    Returns:
        The ``zeo_memory`` logger
    """
    logger = logging.getLogger(ROOT_LOGGER_NAME)
    logger.setLevel(level.levelno)
    
    stale = [h for h in logger.handlers if isinstance(h.formatter, StructuredFormatter)]
    for handler in stale:
        logger.removeHandler(handler)
    
    handler = logging.StreamHandler(output or sys.stderr)
    handler.setFormatter(StructuredFormatter(json_output=json_output))
    logger.addHandler(handler)
    return logger
