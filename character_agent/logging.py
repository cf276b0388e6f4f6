import logging
import sys

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def setup_logging(level: str = "INFO") -> None:
    root = logging.getLogger()
    root.setLevel(level.upper())
    if any(getattr(h, "_character_agent", False) for h in root.handlers):
        return
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    handler._character_agent = True  # type: ignore[attr-defined]
    root.addHandler(handler)
    # httpx 每个请求都打 INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)
