"""Security and governance components for Safe Transit"""

from safetransit.governance.crypto_service import CryptographyService, load_encryption_key
from safetransit.governance.audit_logger import AuditLogger
from safetransit.governance.rate_limiter import (
    RateLimiter,
    NoOpRateLimiter,
    InMemoryRateLimiter,
    build_rate_limiter,
)

__all__ = [
    'CryptographyService',
    'load_encryption_key',
    'AuditLogger',
    'RateLimiter',
    'NoOpRateLimiter',
    'InMemoryRateLimiter',
    'build_rate_limiter',
]
