"""Logging setup.

Modules log upper-snake event names and pass structured fields through
``extra=``. The formatter below renders those fields as key=value pairs so the
events stay greppable without a JSON pipeline. User text is never logged.
"""
import logging
import sys

# Attributes every LogRecord has; anything else came in through ``extra=``.
_RESERVED = set(vars(logging.LogRecord("", 0, "", 0, "", (), None))) | {"message", "asctime"}


class KeyValueFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        base = super().format(record)
        fields = {k: v for k, v in record.__dict__.items() if k not in _RESERVED}
        if not fields:
            return base
        rendered = " ".join(f"{k}={v}" for k, v in sorted(fields.items()))
        return f"{base} {rendered}"


def configure_logging(level: str = "INFO") -> None:
    root = logging.getLogger("intake")
    root.setLevel(level.upper())
    if any(getattr(h, "_intake_handler", False) for h in root.handlers):
        return
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(KeyValueFormatter("%(asctime)s %(levelname)s %(name)s %(message)s"))
    handler._intake_handler = True  # type: ignore[attr-defined]
    root.addHandler(handler)
