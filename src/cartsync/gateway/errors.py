"""Error taxonomy for remote gateway operations."""
from typing import Optional, List, Dict, Any


class GatewayError(Exception):
    """Base class for remote gateway errors."""
    def __init__(
        self,
        message: str,
        suggestions: Optional[List[str]] = None,
        metadata: Optional[Dict[str, Any]] = None
    ):
        self.message = message
        self.suggestions = suggestions or []
        self.metadata = metadata or {}
        super().__init__(message)


class ConnectivityError(GatewayError):
    """The remote backend could not be reached or timed out."""
    pass


class RemoteRejectionError(GatewayError):
    """The request arrived but a business rule rejected it."""
    pass


class ConflictError(RemoteRejectionError):
    """The record already exists."""
    pass


class NotFoundError(RemoteRejectionError):
    """The referenced record does not exist or is not owned by the caller."""
    pass


class UnsupportedOperationError(GatewayError):
    """The configured backend cannot serve this operation."""
    pass
