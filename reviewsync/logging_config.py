import json
import logging
import os
import sys
from contextvars import ContextVar
from datetime import datetime, timezone

# Exposed so middleware can set the id for the current request
req_id_var: ContextVar[str] = ContextVar("req_id", default="-")

# Substrings that must never reach a log line verbatim
_SECRET_MARKERS = ("access_token", "refresh_token", "client_secret")


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "timestamp": datetime.now(timezone.utc).isoformat(timespec="seconds"),
            "req_id": getattr(record, "req_id", req_id_var.get()),
            "level": record.levelname,
            "component": record.name,
            "msg": record.getMessage(),
        }
        env = os.getenv("ENV", "").strip()
        if env:
            payload["env"] = env
        if hasattr(record, "meta"):
            payload["meta"] = record.meta
        if record.exc_info:
            payload["exc"] = self.formatException(record.exc_info)
        try:
            return json.dumps(payload, ensure_ascii=False, default=str)
        except (TypeError, ValueError):
            # Unserialisable meta; keep the message
            return payload["msg"]


class RequestIdFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        record.req_id = req_id_var.get()
        return True


class SecretScrubFilter(logging.Filter):
    """Drop token values that slipped into structured meta."""

    def filter(self, record: logging.LogRecord) -> bool:
        meta = getattr(record, "meta", None)
        if isinstance(meta, dict):
            for key in list(meta):
                if any(marker in key.lower() for marker in _SECRET_MARKERS):
                    meta[key] = "[redacted]"
        return True


def configure_logging() -> None:
    """
    Call once at app startup.
    LOG_LEVEL env var controls verbosity (default INFO).
    LOG_TO_STDOUT / DEBUG_MODE switch to a plain human-readable format.
    """
    level = os.getenv("LOG_LEVEL", "INFO").upper()
    plain = any(
        os.getenv(name, "").lower() in {"1", "true", "yes", "on"}
        for name in ("LOG_TO_STDOUT", "DEBUG_MODE")
    )

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level, logging.INFO))
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    if plain:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(
            logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - [%(req_id)s] %(message)s")
        )
    else:
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(JsonFormatter())
    handler.addFilter(RequestIdFilter())
    handler.addFilter(SecretScrubFilter())
    root_logger.addHandler(handler)

    # httpx logs full request URLs at INFO, which is noisy for paginated syncs
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger(__name__).info(
        "logging configured", extra={"meta": {"level": level, "plain": plain}}
    )
