from .context import Actor
from .errors import (
    ConflictError,
    ExpiredError,
    ForbiddenError,
    NotFoundError,
    PortfolioError,
    UpstreamError,
    ValidationError,
)

__all__ = [
    "Actor",
    "PortfolioError",
    "ValidationError",
    "ForbiddenError",
    "NotFoundError",
    "ConflictError",
    "ExpiredError",
    "UpstreamError",
]
