"""API layer components for Safe Transit"""

from safetransit.api.app import create_app
from safetransit.api.auth import Authenticator, AuthResult, require_admin
from safetransit.api.models import ErrorResponse
from safetransit.api.middleware import (
    RequestLoggingMiddleware,
    ErrorHandlingMiddleware
)

__all__ = [
    'create_app',
    'Authenticator',
    'AuthResult',
    'require_admin',
    'ErrorResponse',
    'RequestLoggingMiddleware',
    'ErrorHandlingMiddleware'
]
