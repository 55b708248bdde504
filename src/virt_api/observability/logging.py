"""
Structured logging for virt-api.

Log records are emitted as JSON documents carrying a correlation id, so one
reconciliation or one inbound request can be followed across log lines.
Reconciliation steps and authorization decisions go through BootstrapLogger,
which attaches the structured fields the formatter knows about.
"""

import json
import logging
import uuid
from contextvars import ContextVar
from datetime import UTC, datetime

# Set per reconciliation and per inbound request
correlation_id: ContextVar[str] = ContextVar("correlation_id", default="")

# The aggregation layer polls "/" to decide whether the APIService is available
PROBE_MARKERS = ('"GET / ', "/healthz")

# Libraries whose INFO output is noise for an API server
QUIET_LOGGERS = (
    "kopf",
    "kubernetes",
    "urllib3",
    "aiohttp.server",
    "aiohttp.web",
)

# aiohttp writes one INFO line per request here
ACCESS_LOGGER = "aiohttp.access"

PLAIN_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"
PLAIN_FORMAT_WITH_ID = "%(asctime)s %(levelname)s [%(correlation_id)s] %(name)s: %(message)s"


class ProbeFilter(logging.Filter):
    """Drops access log lines produced by control-plane availability probes."""

    def filter(self, record: logging.LogRecord) -> bool:
        text = record.getMessage()
        return not any(marker in text for marker in PROBE_MARKERS)


class CorrelationIDFilter(logging.Filter):
    """Stamps every record with the current correlation id."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.correlation_id = get_correlation_id() or set_correlation_id(
            generate_correlation_id()
        )
        return True


class StructuredFormatter(logging.Formatter):
    """
    Renders a record as one JSON object per line.

    Only the attributes named in STRUCTURED_FIELDS are copied from ``extra``;
    everything else a library attaches to a record is left out.
    """

    STRUCTURED_FIELDS = (
        "resource_type",
        "resource_name",
        "namespace",
        "operation",
        "duration",
        "error_type",
        "audit",
        "cache_name",
        "revision",
        "http_method",
        "http_path",
    )

    def format(self, record: logging.LogRecord) -> str:
        document = {
            "timestamp": datetime.fromtimestamp(record.created, UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "correlation_id": getattr(record, "correlation_id", ""),
        }
        document.update(
            (name, getattr(record, name))
            for name in self.STRUCTURED_FIELDS
            if hasattr(record, name)
        )
        if record.exc_info:
            document["exception"] = self.formatException(record.exc_info)
        return json.dumps(document, default=str)


def generate_correlation_id() -> str:
    """Short random id, unique enough to tell concurrent operations apart."""
    return uuid.uuid4().hex[:8]


def set_correlation_id(corr_id: str) -> str:
    correlation_id.set(corr_id)
    return corr_id


def get_correlation_id() -> str:
    return correlation_id.get()


def setup_structured_logging(
    log_level: str = "INFO",
    enable_json_formatting: bool = True,
    correlation_id_enabled: bool = True,
    log_health_probes: bool = False,
) -> None:
    """
    Route all logging through a single stderr handler.

    Args:
        log_level: Root log level name
        enable_json_formatting: Emit JSON documents instead of plain lines
        correlation_id_enabled: Attach correlation ids to records
        log_health_probes: Keep access log lines of availability probes;
            every other request is always logged
    """
    handler = logging.StreamHandler()
    if enable_json_formatting:
        handler.setFormatter(StructuredFormatter())
    else:
        handler.setFormatter(
            logging.Formatter(
                PLAIN_FORMAT_WITH_ID if correlation_id_enabled else PLAIN_FORMAT
            )
        )
    if correlation_id_enabled:
        handler.addFilter(CorrelationIDFilter())
    if not log_health_probes:
        handler.addFilter(ProbeFilter())

    root = logging.getLogger()
    for existing in list(root.handlers):
        root.removeHandler(existing)
    root.addHandler(handler)
    root.setLevel(getattr(logging, log_level.upper(), logging.INFO))

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
    logging.getLogger(ACCESS_LOGGER).setLevel(logging.INFO)


class BootstrapLogger:
    """
    Emits the structured events of declaration reconciliation and request
    authorization.
    """

    def __init__(self, name: str):
        self.logger = logging.getLogger(name)

    def _declaration_event(
        self,
        level: int,
        message: str,
        resource_type: str,
        resource_name: str,
        namespace: str,
        operation: str,
        **fields,
    ) -> None:
        self.logger.log(
            level,
            message,
            extra={
                "resource_type": resource_type,
                "resource_name": resource_name,
                "namespace": namespace,
                "operation": operation,
                **fields,
            },
        )

    def log_reconciliation_start(
        self, resource_type: str, resource_name: str, namespace: str
    ) -> str:
        """
        Open a reconciliation under a fresh correlation id.

        Returns:
            The correlation id of the reconciliation
        """
        corr_id = set_correlation_id(generate_correlation_id())
        self._declaration_event(
            logging.INFO,
            f"Reconciling {resource_type} {resource_name}",
            resource_type,
            resource_name,
            namespace,
            "reconcile_start",
        )
        return corr_id

    def log_reconciliation_success(
        self,
        resource_type: str,
        resource_name: str,
        namespace: str,
        operation: str,
        duration: float,
    ) -> None:
        self._declaration_event(
            logging.INFO,
            f"{resource_type} {resource_name} {operation}",
            resource_type,
            resource_name,
            namespace,
            f"reconcile_{operation}",
            duration=duration,
        )

    def log_reconciliation_error(
        self,
        resource_type: str,
        resource_name: str,
        namespace: str,
        error: Exception,
        duration: float,
    ) -> None:
        self._declaration_event(
            logging.ERROR,
            f"Reconciling {resource_type} {resource_name} failed: {error}",
            resource_type,
            resource_name,
            namespace,
            "reconcile_error",
            error_type=type(error).__name__,
            duration=duration,
        )

    def log_authorization_audit(
        self,
        method: str,
        path: str,
        user: str | None,
        allowed: bool,
        reason: str = "",
    ) -> None:
        """
        Record an authorization decision.

        Allowed requests are logged at DEBUG, denials at WARNING.
        """
        verdict = "allowed" if allowed else "denied"
        message = f"{method} {path} {verdict}" + (f": {reason}" if reason else "")
        self.logger.log(
            logging.DEBUG if allowed else logging.WARNING,
            message,
            extra={
                "audit": {
                    "event": "request_authorization",
                    "user": user or "",
                    "allowed": allowed,
                    "reason": reason,
                },
                "http_method": method,
                "http_path": path,
            },
        )
