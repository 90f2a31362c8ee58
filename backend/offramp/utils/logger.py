"""
Logging Setup — console and file handlers under LOG_DIR.
"""
import logging
import os

from offramp.config import Settings

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def setup_logging(settings: Settings) -> None:
    """Configure root logging once: stdout plus LOG_DIR/server.log."""
    root = logging.getLogger()
    if getattr(root, "_offramp_configured", False):
        return

    level = logging.DEBUG if settings.DEBUG else getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO)
    root.setLevel(level)
    formatter = logging.Formatter(LOG_FORMAT)

    console = logging.StreamHandler()
    console.setFormatter(formatter)
    root.addHandler(console)

    try:
        os.makedirs(settings.LOG_DIR, exist_ok=True)
        file_handler = logging.FileHandler(os.path.join(settings.LOG_DIR, "server.log"))
        file_handler.setFormatter(formatter)
        root.addHandler(file_handler)
    except OSError as e:
        root.warning("File logging disabled: %s", e)

    root._offramp_configured = True


def mask(value: str | None, visible: int = 4) -> str:
    """Mask an identifier for logs, keeping only the last `visible` characters."""
    if not value:
        return ""
    value = str(value)
    if len(value) <= visible:
        return "X" * len(value)
    return "X" * (len(value) - visible) + value[-visible:]
