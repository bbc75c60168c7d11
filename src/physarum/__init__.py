# Physarum chat core package init
import logging
import os
from typing import Mapping, Optional

_RECORD_FIELDS = frozenset(logging.LogRecord("", 0, "", 0, "", (), None).__dict__) | {"message", "asctime"}


class EventFormatter(logging.Formatter):
    """Renders ``LOG.info("event_name", extra={...})`` calls as one line.

    ``[PHYSARUM][INFO] stream: stream_completed entry_id=ab12-000002 chunks=3``
    """

    def format(self, record: logging.LogRecord) -> str:
        component = record.name[len("physarum."):] if record.name.startswith("physarum.") else record.name
        fields = " ".join(
            f"{key}={value}" for key, value in record.__dict__.items() if key not in _RECORD_FIELDS
        )
        line = f"[PHYSARUM][{record.levelname}] {component}: {record.getMessage()}"
        if fields:
            line = f"{line} {fields}"
        if record.exc_info:
            line = f"{line}\n{self.formatException(record.exc_info)}"
        return line


def _level(name: Optional[str], default: int) -> int:
    value = getattr(logging, (name or "").strip().upper(), None)
    return value if isinstance(value, int) else default


def configure_logging(env: Optional[Mapping[str, str]] = None) -> None:
    """Set up the ``physarum`` logger.

    ``PHYSARUM_LOG_LEVEL`` sets the package level. ``PHYSARUM_LOG_LEVELS``
    overrides single components, e.g. ``stream=DEBUG,llm=WARNING``.
    """
    env = os.environ if env is None else env
    logger = logging.getLogger("physarum")
    if not any(isinstance(h.formatter, EventFormatter) for h in logger.handlers):
        handler = logging.StreamHandler()
        handler.setFormatter(EventFormatter())
        logger.addHandler(handler)
    level = _level(env.get("PHYSARUM_LOG_LEVEL"), logging.INFO)
    logger.setLevel(level)

    for item in (env.get("PHYSARUM_LOG_LEVELS") or "").split(","):
        component, sep, name = item.partition("=")
        if not sep or not component.strip():
            continue
        logging.getLogger(f"physarum.{component.strip()}").setLevel(_level(name, level))


configure_logging()
