"""
src/punchclock/logger.py
Layered logging helpers shared by the engine, the client and the CLI.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
import os
import sys
from typing import Any, Dict, Optional

__all__ = [
    "logger",
    "step",
    "progress",
    "success",
    "debug_detail",
    "get_logger",
    "spinner",
    "set_log_profile",
    "configure_from_env",
]

BASE_LOGGER_NAME = "punchclock"

_PALETTE: Dict[str, str] = {
    "reset": "\033[0m",
    "dim": "\033[2m",
    "bold": "\033[1m",
    "blue": "\033[34m",
    "green": "\033[32m",
    "yellow": "\033[33m",
    "red": "\033[31m",
    "cyan": "\033[36m",
}

_PROFILE_LEVELS = {
    "quiet": logging.WARNING,
    "debug": logging.DEBUG,
    "user": logging.INFO,
}

FILE_FORMAT = "%(asctime)s [%(levelname)s] %(name)s %(message)s"


def _colors_enabled() -> bool:
    return os.getenv("NO_COLOR") is None


def _apply_color(text: str, *styles: str) -> str:
    if not _colors_enabled() or not styles:
        return text
    colors = "".join(_PALETTE.get(style, "") for style in styles)
    return f"{colors}{text}{_PALETTE['reset']}"


class LayeredFormatter(logging.Formatter):
    """Prefix each record with an icon chosen by its ``layer`` attribute."""

    LAYER_MAPPINGS: Dict[str, Dict[str, Any]] = {
        "step": {"icon": "▶", "style": ("blue", "bold")},
        "progress": {"icon": "…", "style": ("cyan",)},
        "success": {"icon": "✓", "style": ("green", "bold")},
        "warning": {"icon": "!", "style": ("yellow", "bold")},
        "error": {"icon": "✗", "style": ("red", "bold")},
        "user": {"icon": "•", "style": ()},
    }

    def format(self, record: logging.LogRecord) -> str:
        layer = getattr(record, "layer", "user")
        mapping = self.LAYER_MAPPINGS.get(layer, self.LAYER_MAPPINGS["user"])
        message = super().format(record)
        if layer == "debug":
            return f"{_apply_color('[debug]', 'dim')} {message}"
        return f"{_apply_color(mapping['icon'], *mapping['style'])} {message}"


class LayeredAdapter(logging.LoggerAdapter):
    """Logger adapter that injects a 'layer' extra value."""

    def __init__(self, logger: logging.Logger, default_layer: str = "user"):
        super().__init__(logger, {"layer": default_layer})

    def log(self, level: int, msg: Any, *args, layer: Optional[str] = None, **kwargs) -> None:
        if not self.isEnabledFor(level):
            return
        extra = kwargs.setdefault("extra", {})
        extra.setdefault("layer", layer or self.extra.get("layer", "user"))
        self.logger.log(level, msg, *args, **kwargs)

    def warning(self, msg: Any, *args, **kwargs) -> None:  # type: ignore[override]
        kwargs.setdefault("layer", "warning")
        super().warning(msg, *args, **kwargs)

    def error(self, msg: Any, *args, **kwargs) -> None:  # type: ignore[override]
        kwargs.setdefault("layer", "error")
        super().error(msg, *args, **kwargs)

    def exception(self, msg: Any, *args, **kwargs) -> None:  # type: ignore[override]
        kwargs.setdefault("layer", "error")
        super().exception(msg, *args, **kwargs)


def _console_level() -> int:
    profile = (os.getenv("LOG_PROFILE") or "user").lower()
    level = _PROFILE_LEVELS.get(profile, logging.INFO)
    override = os.getenv("LOG_LEVEL")
    if override:
        named = getattr(logging, override.upper(), None)
        if isinstance(named, int):
            level = named
    return level


def _attach_file_handler(base_logger: logging.Logger, path: str) -> None:
    target = os.path.abspath(path)
    for handler in base_logger.handlers:
        if isinstance(handler, logging.FileHandler) and handler.baseFilename == target:
            return
    try:
        file_handler = logging.FileHandler(target, encoding="utf-8")
    except OSError as exc:
        base_logger.warning("Failed to configure logfile '%s': %s", path, exc)
        return
    file_handler.setFormatter(logging.Formatter(FILE_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))
    file_handler.setLevel(logging.DEBUG)
    base_logger.addHandler(file_handler)


def _configure_base_logger() -> LayeredAdapter:
    base_logger = logging.getLogger(BASE_LOGGER_NAME)
    if base_logger.handlers:
        return LayeredAdapter(base_logger)

    base_logger.setLevel(logging.DEBUG)

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(_console_level())
    console_handler.setFormatter(LayeredFormatter("%(message)s"))
    base_logger.addHandler(console_handler)

    log_file = os.getenv("LOG_FILE")
    if log_file:
        _attach_file_handler(base_logger, log_file)

    return LayeredAdapter(base_logger)


logger = _configure_base_logger()


def step(message: str) -> None:
    """Log a major step in the workflow."""
    logger.log(logging.INFO, message, layer="step")


def progress(message: str) -> None:
    """Log a short-lived progress update."""
    logger.log(logging.INFO, message, layer="progress")


def success(message: str) -> None:
    """Log successful completion of an action."""
    logger.log(logging.INFO, message, layer="success")


def debug_detail(message: str) -> None:
    """Log detailed debug information (hidden unless LOG_PROFILE=debug)."""
    logger.log(logging.DEBUG, message, layer="debug")


def get_logger(name: str, *, layer: str = "user") -> LayeredAdapter:
    """Return a child of the ``punchclock`` logger using the layered formatting."""
    if name.startswith(f"{BASE_LOGGER_NAME}."):
        name = name[len(BASE_LOGGER_NAME) + 1:]
    child = logging.getLogger(f"{BASE_LOGGER_NAME}.{name}")
    return LayeredAdapter(child, default_layer=layer)


class _Spinner:
    FRAMES = ["⠋", "⠙", "⠹", "⠸", "⠼", "⠴", "⠦", "⠧", "⠇", "⠏"]

    def __init__(self, message: str):
        self.message = message
        self._task: Optional[asyncio.Task[None]] = None
        self._running = False
        self._interactive = sys.stdout.isatty()

    async def __aenter__(self) -> "_Spinner":
        self._running = True
        if self._interactive:
            self._task = asyncio.create_task(self._animate())
        else:
            progress(self.message)
        return self

    async def __aexit__(self, exc_type, exc, tb) -> bool:
        self._running = False
        if self._task:
            await self._task
            _clear_current_line()
        if exc_type is not None:
            logger.error(f"{self.message} – {exc}")
        else:
            success(self.message)
        return False

    async def _animate(self) -> None:
        for frame in itertools.cycle(self.FRAMES):
            if not self._running:
                break
            sys.stdout.write(f"\r{_apply_color(frame, 'cyan')} {self.message}")
            sys.stdout.flush()
            await asyncio.sleep(0.12)


def _clear_current_line() -> None:
    sys.stdout.write("\r" + " " * 80 + "\r")
    sys.stdout.flush()


def spinner(message: str) -> _Spinner:
    """Return an async spinner context manager.

    On a non-interactive stdout the spinner degrades to a single progress line.
    """
    return _Spinner(message)


def _set_console_level(level: int) -> None:
    for handler in logging.getLogger(BASE_LOGGER_NAME).handlers:
        if type(handler) is logging.StreamHandler:
            handler.setLevel(level)


def set_log_profile(profile: str) -> None:
    """Adjust console logging verbosity at runtime."""
    profile = (profile or "user").lower()
    _set_console_level(_PROFILE_LEVELS.get(profile, logging.INFO))
    os.environ["LOG_PROFILE"] = profile


def configure_from_env() -> None:
    """Re-read LOG_PROFILE, LOG_LEVEL and LOG_FILE after a ``.env`` was loaded.

    The handlers are built at import time, before any ``.env`` file is read.
    """
    _set_console_level(_console_level())
    log_file = os.getenv("LOG_FILE")
    if log_file:
        _attach_file_handler(logging.getLogger(BASE_LOGGER_NAME), log_file)
