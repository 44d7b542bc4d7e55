import sys
from collections.abc import Callable
from pathlib import Path
from typing import Any

from loguru import logger

DEFAULT_LOG_PATH = ".assistant_chat/chat.log"

_CONSOLE_FORMAT = "<level>{level:<8}</level> | <cyan>{name}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>"
_FILE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level:<8} | {name}:{function}:{line} - {message}"

_DEFAULT_CONSUMERS: list[dict[str, Any]] = [
    {"type": "console", "level": "WARNING"},
    {"type": "file"},
]


def _add_console(level: str, options: dict[str, Any]) -> str:
    logger.add(sys.stderr, level=level, format=_CONSOLE_FORMAT)
    return f"console (stderr, {level})"


def _add_file(level: str, options: dict[str, Any]) -> str:
    path = Path(options.get("path", DEFAULT_LOG_PATH))
    path.parent.mkdir(parents=True, exist_ok=True)
    serialize = bool(options.get("serialize", False))
    logger.add(
        str(path),
        level=level,
        format=_FILE_FORMAT,
        rotation=options.get("rotation", "10 MB"),
        retention=options.get("retention", 3),
        serialize=serialize,
        enqueue=True,
    )
    return f"file ({path}, {'jsonl' if serialize else 'text'}, {level})"


_SINKS: dict[str, Callable[[str, dict[str, Any]], str]] = {
    "console": _add_console,
    "file": _add_file,
}


def setup_logging(level: str = "INFO", consumers: list[dict[str, Any]] | None = None) -> list[str]:
    """Replace loguru's default sink with the configured ones.

    Each consumer is a ``LogConsumers`` entry from config.json: ``type`` picks
    the sink, ``level`` overrides the global level, other keys are sink options.
    Returns one description per registered sink.
    """
    logger.remove()

    descriptions: list[str] = []
    for config in _DEFAULT_CONSUMERS if consumers is None else consumers:
        sink_type = config.get("type", "")
        add_sink = _SINKS.get(sink_type)
        if add_sink is None:
            logger.warning(f"Unknown log consumer type: {sink_type!r}")
            continue
        options = {k: v for k, v in config.items() if k not in ("type", "level")}
        descriptions.append(add_sink(config.get("level", level), options))
    return descriptions
