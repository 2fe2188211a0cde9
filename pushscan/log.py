import contextvars
import json
import logging
import sys
from contextlib import contextmanager

ROOT_LOGGER = "pushscan"
CONTEXT_FIELDS = ("request_id", "delivery_id", "event_type", "repo", "commit_sha")

_context = {name: contextvars.ContextVar(name, default=None) for name in CONTEXT_FIELDS}


def current_context() -> dict:
    out = {}
    for name, var in _context.items():
        value = var.get()
        if value is not None:
            out[name] = value
    return out


@contextmanager
def log_context(**fields):
    """Bind context fields for every log record emitted inside the block."""
    tokens = []
    for name, value in fields.items():
        if name not in _context:
            raise KeyError(f"unknown log context field: {name}")
        tokens.append((_context[name], _context[name].set(value)))
    try:
        yield
    finally:
        for var, token in reversed(tokens):
            var.reset(token)


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        log_record = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        log_record.update(current_context())
        if record.exc_info:
            log_record["error"] = self.formatException(record.exc_info)
        return json.dumps(log_record, ensure_ascii=False)


class PrettyFormatter(logging.Formatter):
    def __init__(self):
        super().__init__("%(asctime)s %(levelname)-7s %(name)s: %(message)s")

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        ctx = current_context()
        if ctx:
            line += " " + " ".join(f"{k}={v}" for k, v in ctx.items())
        return line


def setup_logging(level: str = "INFO", pretty: bool = False) -> logging.Logger:
    logger = logging.getLogger(ROOT_LOGGER)
    resolved = logging.getLevelName(level.upper())
    logger.setLevel(resolved if isinstance(resolved, int) else logging.INFO)
    logger.propagate = False
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
    if pretty:
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(PrettyFormatter())
    else:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(JsonFormatter())
    logger.addHandler(handler)
    return logger


def mask_secret(secret: str) -> str:
    if len(secret) <= 6:
        return "***"
    return secret[:3] + "***" + secret[-3:]
