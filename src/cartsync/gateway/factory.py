"""Selects the remote gateway adapter once at start-up."""
from typing import Optional

from cartsync.config.settings import CartSyncSettings, get_settings
from cartsync.db.session import create_engine_for
from cartsync.utils.logger import get_logger
from .base import RemoteGateway
from .relational import RelationalGateway
from .rest import RestGateway

logger = get_logger(__name__)


def create_gateway(settings: Optional[CartSyncSettings] = None) -> RemoteGateway:
    """
    Build the adapter named by ``settings.BACKEND``.

    Args:
        settings: Settings to use (default: cached application settings)

    Returns:
        An uninitialized gateway; call ``initialize()`` before use.
    """
    settings = settings or get_settings()

    if settings.BACKEND == "rest":
        logger.info("Using REST backend", api_url=settings.API_URL)
        return RestGateway(settings.API_URL, timeout=settings.API_TIMEOUT)

    logger.info("Using relational backend")
    engine = create_engine_for(settings.REMOTE_DB_URL, echo=settings.DB_ECHO)
    return RelationalGateway(engine)
