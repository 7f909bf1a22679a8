"""Remote data gateway package for CartSync."""
from .base import RemoteGateway
from .errors import (
    GatewayError,
    ConnectivityError,
    RemoteRejectionError,
    ConflictError,
    NotFoundError,
    UnsupportedOperationError,
)
from .factory import create_gateway

__all__ = [
    'RemoteGateway',
    'GatewayError',
    'ConnectivityError',
    'RemoteRejectionError',
    'ConflictError',
    'NotFoundError',
    'UnsupportedOperationError',
    'create_gateway',
]
