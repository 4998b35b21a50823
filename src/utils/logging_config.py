import logging
import os

_NOISY_LOGGERS = ("httpx", "httpcore", "neo4j", "urllib3")


def configure_logging(level_name: str | None = None) -> None:
    level_name = (level_name or os.getenv("LOG_LEVEL", "INFO")).upper()
    level = logging.getLevelName(level_name)
    if not isinstance(level, int):
        level = logging.INFO

    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    # Explicit MCP-related loggers
    for name in ("fastmcp", "mcp", "fastapi"):
        logging.getLogger(name).setLevel(level)

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
