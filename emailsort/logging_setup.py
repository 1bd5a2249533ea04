import logging
import os


class KeyValueFormatter(logging.Formatter):
    """
    `time=... level=... logger=... message=...` lines.

    Records carrying an `event` attribute (see observability.EventLog) are
    rendered as `event=<name>` followed by their fields instead of the
    message text.
    """

    def format(self, record: logging.LogRecord) -> str:
        base = {
            "level": record.levelname,
            "logger": record.name,
        }
        event = getattr(record, "event", None)
        if event:
            base["event"] = event
            base.update(getattr(record, "event_fields", None) or {})
        else:
            base["message"] = record.getMessage()
        if record.exc_info:
            base["exc_info"] = self.formatException(record.exc_info)
        ts = self.formatTime(record, self.datefmt)
        kv = [f"time={ts}"] + [f"{k}={v}" for k, v in base.items()]
        return " ".join(kv)


def configure_logging(level: str | None = None) -> None:
    level = (level or os.getenv("LOG_LEVEL", "INFO")).upper()
    logging.basicConfig(level=level, format="%(message)s")
    root = logging.getLogger()
    root.setLevel(level)
    for h in root.handlers:
        h.setFormatter(KeyValueFormatter())
