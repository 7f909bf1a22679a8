"""Base service class with common functionality."""
import asyncio
from datetime import datetime, UTC
from typing import Awaitable, Generic, List, Optional, Set, TypeVar
from pydantic import BaseModel, ConfigDict

from cartsync.gateway.base import RemoteGateway
from cartsync.gateway.errors import GatewayError
from cartsync.storage.cache_store import LocalCacheStore
from cartsync.utils.logger import get_logger
from .connectivity import ConnectivityProbe

# Generic type for service results
T = TypeVar('T')


class Result(BaseModel, Generic[T]):
    """Generic result type for service operations."""
    success: bool
    data: Optional[T] = None
    error: str = ""
    suggestions: List[str] = []
    metadata: dict = {}

    model_config = ConfigDict(arbitrary_types_allowed=True)

    @classmethod
    def ok(cls, data: T = None, **metadata) -> 'Result[T]':
        """Create a successful result."""
        return cls(success=True, data=data, metadata=metadata)

    @classmethod
    def fail(cls, error: str, suggestions: Optional[List[str]] = None, **metadata) -> 'Result[T]':
        """Create a failed result."""
        return cls(
            success=False,
            error=error or "Unknown error",
            suggestions=suggestions or [],
            metadata=metadata
        )

    @classmethod
    def from_gateway_error(cls, error: GatewayError) -> 'Result[T]':
        """Create a failed result carrying a gateway error's reason."""
        return cls(
            success=False,
            error=error.message,
            suggestions=error.suggestions,
            metadata={**error.metadata, "error_type": error.__class__.__name__}
        )


class BaseService:
    """Base class for services that reconcile local and remote state."""

    def __init__(
        self,
        cache: LocalCacheStore,
        gateway: RemoteGateway,
        probe: ConnectivityProbe
    ):
        """
        Initialize the service.

        Args:
            cache: Local cache store
            gateway: Remote data gateway selected at start-up
            probe: Connectivity probe gating remote calls
        """
        self.cache = cache
        self.gateway = gateway
        self.probe = probe
        self.logger = get_logger(self.__class__.__name__)
        self._background: Set[asyncio.Task] = set()

    def _log_action(
        self,
        action: str,
        status: str = "success",
        **kwargs
    ) -> None:
        """
        Log a service action.

        Args:
            action: Name of the action
            status: Status of the action
            **kwargs: Additional log data
        """
        self.logger.info(f"{action}: {status}", **kwargs)

    def _get_now(self) -> datetime:
        """Get current UTC datetime."""
        return datetime.now(UTC)

    def _spawn(self, coro: Awaitable, action: str) -> asyncio.Task:
        """
        Run a best-effort coroutine without awaiting it.

        Failures are logged and never reach the caller.
        """
        task = asyncio.ensure_future(self._swallow(coro, action))
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task

    async def _swallow(self, coro: Awaitable, action: str) -> None:
        try:
            await coro
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self.logger.warning(f"{action}: failed", error=str(e), error_type=e.__class__.__name__)

    async def wait_for_background(self) -> None:
        """Wait until all background tasks started so far have finished."""
        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    async def shutdown(self) -> None:
        """Cancel outstanding background tasks."""
        for task in list(self._background):
            task.cancel()
        await asyncio.gather(*list(self._background), return_exceptions=True)
        self._background.clear()
