"""Logging configuration for CartSync using loguru.

Every component logs through ``get_logger``, which binds a ``cartsync.``
name. Sync and basket actions pass their identifiers as keyword arguments
(``user_id``, ``price_id``, ``basket_id`` and so on); those land in the
record's ``extra`` and are shown after the message on the console and kept
as JSON fields in the file sink, which is the audit trail of what was queued
and what reached the remote store.
"""
import sys
from typing import List, Optional
from loguru import logger

from cartsync.config.settings import CartSyncSettings, get_settings

ROOT_NAME = "cartsync"

# Keys shown on the console when a record carries them
CONTEXT_KEYS = (
    "user_id",
    "price_id",
    "item_id",
    "basket_id",
    "barcode",
    "supermarket",
    "count",
    "error_type",
    "error",
)

SIMPLE_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | "
    "<level>{level: <8}</level> | "
    "<level>{message}</level>"
)


def _detailed_format(record) -> str:
    """Console line with the component name and the sync context fields."""
    extra = record["extra"]
    record["extra"]["context"] = " ".join(
        f"{key}={extra[key]}" for key in CONTEXT_KEYS if key in extra
    )
    return (
        "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | "
        "<level>{level: <8}</level> | "
        "<cyan>{extra[name]}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> | "
        "<level>{message}</level>"
        + (" | <dim>{extra[context]}</dim>" if extra["context"] else "")
        + "\n{exception}"
    )


def _is_cartsync_record(record) -> bool:
    """Keep third-party loguru records out of the audit file."""
    return record["extra"].get("name", "").startswith(ROOT_NAME)


def configure_logging(settings: Optional[CartSyncSettings] = None) -> List[int]:
    """Install the console sink and, when ``LOG_FILE`` is set, the JSON file sink.

    Replaces any handlers installed earlier, so it can be called again after
    the settings change.

    Returns:
        The loguru handler ids that were added.
    """
    settings = settings or get_settings()
    logger.remove()
    # Records logged without a bound name still render
    logger.configure(extra={"name": ROOT_NAME})

    handler_ids = [
        logger.add(
            sys.stderr,
            format=_detailed_format if settings.LOG_FORMAT == "detailed" else SIMPLE_FORMAT,
            level=settings.LOG_LEVEL,
            colorize=True,
            backtrace=True,
            diagnose=settings.LOG_LEVEL == "DEBUG",
        )
    ]

    if settings.LOG_FILE:
        settings.LOG_FILE.parent.mkdir(parents=True, exist_ok=True)
        handler_ids.append(logger.add(
            settings.LOG_FILE,
            level=settings.LOG_LEVEL,
            filter=_is_cartsync_record,
            rotation=f"{settings.LOG_ROTATION_SIZE_MB} MB",
            retention=f"{settings.LOG_RETENTION_DAYS} days",
            compression="zip",
            serialize=True,
            backtrace=True,
            diagnose=False,
            # Background sync tasks and the foreground share this sink
            enqueue=True,
        ))

    return handler_ids


configure_logging()


def get_logger(name: str):
    """Get a logger instance with the given name.

    Args:
        name: The name of the module/component requesting the logger.
            Usually the module's __name__ or the owning class name.

    Returns:
        A logger instance bound with the given name.
    """
    if not name.startswith(f"{ROOT_NAME}.") and name != "__main__":
        name = f"{ROOT_NAME}.{name}"
    return logger.bind(name=name)
