"""Reachability check gating remote operations."""
import asyncio

from cartsync.gateway.base import RemoteGateway
from cartsync.utils.logger import get_logger


class ConnectivityProbe:
    """Answers whether the remote backend is reachable right now.

    Never raises: errors and timeouts both count as unreachable.
    """

    def __init__(self, gateway: RemoteGateway, timeout: float = 3.0):
        self.gateway = gateway
        self.timeout = timeout
        self.logger = get_logger(self.__class__.__name__)

    async def is_reachable(self) -> bool:
        try:
            return bool(await asyncio.wait_for(self.gateway.ping(), timeout=self.timeout))
        except asyncio.TimeoutError:
            self.logger.debug("Connectivity probe timed out", timeout=self.timeout)
            return False
        except Exception as e:
            self.logger.debug("Connectivity probe failed", error=str(e))
            return False
