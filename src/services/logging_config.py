"""
Logging configuration for the workflow run service.

- JSON formatting for production (and always for log files)
- Human-readable formatting for development
- Request, user and run ids carried through context variables
- RunAuditLogger for the status and step trail of each workflow run
"""

import json
import logging
import sys
import time
from contextvars import ContextVar
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, Dict, Any

# Context variables for request tracking
request_id_var: ContextVar[Optional[str]] = ContextVar('request_id', default=None)
user_id_var: ContextVar[Optional[str]] = ContextVar('user_id', default=None)
run_id_var: ContextVar[Optional[str]] = ContextVar('run_id', default=None)

_CONTEXT_VARS = (
    ("request_id", request_id_var),
    ("user_id", user_id_var),
    ("run_id", run_id_var),
)


def _context_fields() -> Dict[str, str]:
    fields = {}
    for key, var in _CONTEXT_VARS:
        value = var.get()
        if value:
            fields[key] = value
    return fields


class JsonFormatter(logging.Formatter):
    """One JSON object per log line, for log aggregators."""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }
        log_data.update(_context_fields())

        if hasattr(record, 'extra_data'):
            log_data.update(record.extra_data)

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


class ReadableFormatter(logging.Formatter):
    """Colored single-line format for development."""

    COLORS = {
        'DEBUG': '\033[36m',
        'INFO': '\033[32m',
        'WARNING': '\033[33m',
        'ERROR': '\033[31m',
        'CRITICAL': '\033[35m',
        'RESET': '\033[0m',
    }

    def format(self, record: logging.LogRecord) -> str:
        color = self.COLORS.get(record.levelname, self.COLORS['RESET'])
        reset = self.COLORS['RESET']

        timestamp = datetime.now().strftime('%H:%M:%S.%f')[:-3]
        message = f"{timestamp} {color}{record.levelname:8s}{reset} [{record.name}] {record.getMessage()}"

        run_id = run_id_var.get()
        if run_id:
            message += f" | run_id={run_id}"

        if getattr(record, 'extra_data', None):
            message += " | " + ' | '.join(f"{k}={v}" for k, v in record.extra_data.items())

        if record.exc_info:
            message += "\n" + self.formatException(record.exc_info)
        return message


class ContextLogger(logging.LoggerAdapter):
    """Logger adapter that merges its bound fields into extra_data."""

    def process(self, msg: str, kwargs: Dict) -> tuple:
        extra = kwargs.get('extra', {})
        extra_data = dict(self.extra)
        extra_data.update(extra.get('extra_data', {}))
        extra['extra_data'] = {k: v for k, v in extra_data.items() if v is not None}
        kwargs['extra'] = extra
        return msg, kwargs


def configure_logging(
    level: str = "INFO",
    json_output: bool = False,
    log_file: Optional[Path] = None
) -> None:
    """
    Configure application logging.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_output: If True, output JSON formatted logs
        log_file: Optional file path for log output (always JSON)
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(level.upper())
    root_logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(JsonFormatter() if json_output else ReadableFormatter())
    root_logger.addHandler(console_handler)

    if log_file:
        log_file = Path(log_file)
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(JsonFormatter())
        root_logger.addHandler(file_handler)

    # Quiet the HTTP client libraries used by the AI SDKs
    for noisy in ("urllib3", "httpx", "httpcore", "openai", "anthropic"):
        logging.getLogger(noisy).setLevel(logging.WARNING)


def get_logger(name: str, **extra) -> ContextLogger:
    """
    Get a context-aware logger.

    Args:
        name: Logger name (typically __name__)
        **extra: Fields included in every record
    """
    return ContextLogger(logging.getLogger(name), extra)


class RunAuditLogger:
    """
    Audit trail for one workflow run.

    Records status transitions and step timings under the
    "workflow.audit" logger so they can be routed separately.
    """

    def __init__(self, run_id: str, workflow_id: Optional[str] = None):
        self.run_id = run_id
        self.logger = get_logger("workflow.audit", run_id=run_id, workflow_id=workflow_id)
        self._start_time: Optional[float] = None
        self._step_times: Dict[str, int] = {}

    def status_changed(self, previous: str, new: str, **data: Any) -> None:
        self.logger.info(
            f"Run status changed from {previous} to {new}",
            extra={'extra_data': {'previous_status': previous, 'new_status': new, **data}},
        )

    def execution_started(self, step_count: int, document_count: int) -> None:
        self._start_time = time.time()
        self.logger.info(
            "Run execution started",
            extra={'extra_data': {'step_count': step_count, 'document_count': document_count}},
        )

    def step_started(self, step_id: str, step_name: str) -> float:
        self.logger.debug(
            f"Step started: {step_name}",
            extra={'extra_data': {'step_id': step_id}},
        )
        return time.time()

    def step_completed(self, step_id: str, step_name: str, started: float) -> None:
        duration_ms = int((time.time() - started) * 1000)
        self._step_times[step_id] = duration_ms
        self.logger.info(
            f"Step completed: {step_name}",
            extra={'extra_data': {'step_id': step_id, 'duration_ms': duration_ms}},
        )

    def step_failed(self, step_id: str, step_name: str, error: str) -> None:
        self.logger.error(
            f"Step failed: {step_name}",
            extra={'extra_data': {'step_id': step_id, 'error': error}},
        )

    def execution_finished(self, status: str) -> None:
        duration_ms = int((time.time() - self._start_time) * 1000) if self._start_time else 0
        self.logger.info(
            f"Run execution finished: {status}",
            extra={'extra_data': {
                'status': status,
                'duration_ms': duration_ms,
                'step_times': self._step_times,
            }},
        )
