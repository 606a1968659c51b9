"""
Structured logging for the camp backend.

Log calls take keyword fields instead of formatted strings:

    logger.info("Camper checked in", camp_day_id=12, athlete_id=34)

Fields end up in ``record.fields``. Production renders one JSON object per
line; development renders a coloured single line. Fields that carry contact
details (emails, phone numbers) are masked before they are written.
"""

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any

from shared.config.settings import settings

# Field names whose values are personal contact details
PII_FIELDS = frozenset({"email", "parent_email", "to_email", "recipient_email", "phone", "parent_phone"})


def mask_email(email: str | None) -> str:
    """
    Mask an email address for logging: "parent@example.com" -> "pa***@example.com".
    """
    if not email:
        return "<no-email>"
    local, sep, domain = email.partition("@")
    if not sep or not local:
        return "***@invalid"
    return f"{local[:2] if len(local) > 2 else local[:1]}***@{domain}"


def mask_phone(phone: str | None) -> str:
    digits = "".join(c for c in phone or "" if c.isdigit())
    return f"***{digits[-4:]}" if len(digits) >= 4 else "***"


def scrub_fields(fields: dict[str, Any]) -> dict[str, Any]:
    """Mask contact details in structured log fields."""
    scrubbed = {}
    for key, value in fields.items():
        if key in PII_FIELDS and isinstance(value, str) and "***" not in value:
            value = mask_email(value) if "email" in key else mask_phone(value)
        scrubbed[key] = value
    return scrubbed


class JsonFormatter(logging.Formatter):
    """One JSON object per record, for log aggregation in production."""

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "ts": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        request_id = getattr(record, "request_id", "-")
        if request_id != "-":
            entry["request_id"] = request_id
        fields = getattr(record, "fields", None)
        if fields:
            entry.update(scrub_fields(fields))
        if record.exc_info:
            entry["exc"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


class ConsoleFormatter(logging.Formatter):
    """Readable single-line output for local development."""

    LEVEL_COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        color = self.LEVEL_COLORS.get(record.levelname, self.RESET)
        request_id = getattr(record, "request_id", "-")
        rid = f" [{request_id[:8]}]" if request_id != "-" else ""
        line = (
            f"{color}{datetime.now():%H:%M:%S} {record.levelname:<8}{self.RESET}"
            f"{rid} {record.name}: {record.getMessage()}"
        )
        fields = getattr(record, "fields", None)
        if fields:
            line += " " + " ".join(f"{k}={v}" for k, v in scrub_fields(fields).items())
        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        return line


class StructuredLogger(logging.Logger):
    """
    Logger that accepts arbitrary keyword fields.

    The standard logging keywords (exc_info, extra, stack_info, stacklevel)
    keep their meaning; everything else is collected into ``record.fields``.
    """

    def _log(
        self,
        level: int,
        msg: object,
        args: Any,
        exc_info: Any = None,
        extra: dict[str, Any] | None = None,
        stack_info: bool = False,
        stacklevel: int = 1,
        **fields: Any,
    ) -> None:
        extra = dict(extra or {})
        extra["fields"] = fields or None
        super()._log(
            level, msg, args,
            exc_info=exc_info, extra=extra, stack_info=stack_info, stacklevel=stacklevel + 1,
        )


logging.setLoggerClass(StructuredLogger)


def setup_logging() -> None:
    """Install the stdout handler once at startup."""
    from shared.infrastructure.correlation import CorrelationIdFilter

    level = logging.DEBUG if settings.debug else logging.INFO

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(level)
    handler.addFilter(CorrelationIdFilter())
    handler.setFormatter(JsonFormatter() if settings.environment == "production" else ConsoleFormatter())

    root = logging.getLogger()
    root.setLevel(level)
    root.handlers.clear()
    root.addHandler(handler)

    for noisy in ("uvicorn.access", "httpx", "httpcore", "sqlalchemy.engine"):
        logging.getLogger(noisy).setLevel(logging.WARNING)


def get_logger(name: str) -> StructuredLogger:
    return logging.getLogger(name)  # type: ignore[return-value]


# One logger per functional area
rest_api_logger = get_logger("camp_ops.api")
auth_logger = get_logger("camp_ops.auth")
payments_logger = get_logger("camp_ops.payments")
camp_ops_logger = get_logger("camp_ops.hq")
royalties_logger = get_logger("camp_ops.royalties")
messaging_logger = get_logger("camp_ops.messaging")
outbox_logger = get_logger("camp_ops.outbox")
security_audit_logger = get_logger("camp_ops.security")


def audit_auth_event(
    event_type: str,
    user_id: int | str | None = None,
    email: str | None = None,
    success: bool = True,
    reason: str | None = None,
    ip_address: str | None = None,
    **extra: Any,
) -> None:
    """
    Record an authentication event (login attempt, rejected token).

    Failures are logged at WARNING so they can be alerted on.
    """
    security_audit_logger.log(
        logging.INFO if success else logging.WARNING,
        "auth event: %s",
        event_type,
        event_type=event_type,
        user_id=user_id,
        email=email,
        success=success,
        reason=reason,
        ip_address=ip_address,
        **extra,
    )


def audit_rate_limit_event(
    context: str,
    identifier: int | str,
    limit: str,
    ip_address: str | None = None,
    **extra: Any,
) -> None:
    security_audit_logger.warning(
        "rate limit hit: %s",
        context,
        context=context,
        identifier=identifier,
        limit=limit,
        ip_address=ip_address,
        **extra,
    )
