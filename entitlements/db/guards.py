"""
Store Guards - Translate storage failures into CollaboratorUnavailableError.

Readers never let driver exceptions leak into the policy: an unreachable
store is an infrastructure failure, never a denial.
"""

import functools
from collections.abc import Awaitable, Callable
from typing import ParamSpec, TypeVar

from sqlalchemy.exc import SQLAlchemyError
from structlog import get_logger

from entitlements.exceptions import CollaboratorUnavailableError
from entitlements.observability.metrics import metrics

logger = get_logger(__name__)

P = ParamSpec("P")
R = TypeVar("R")


def store_call(
    collaborator: str,
) -> Callable[[Callable[P, Awaitable[R]]], Callable[P, Awaitable[R]]]:
    """
    Decorator for reader methods that hit the database.

    Usage:
        @store_call("catalog")
        async def is_shop_only(self, attachment_id: UUID) -> bool:
            ...
    """

    def decorator(func: Callable[P, Awaitable[R]]) -> Callable[P, Awaitable[R]]:
        @functools.wraps(func)
        async def wrapper(*args: P.args, **kwargs: P.kwargs) -> R:
            try:
                return await func(*args, **kwargs)
            except (SQLAlchemyError, OSError) as exc:
                logger.error(
                    "entitlement_store_unavailable",
                    collaborator=collaborator,
                    operation=func.__name__,
                    error=str(exc),
                    error_type=type(exc).__name__,
                )
                metrics.record_error(type(exc).__name__, f"{collaborator}.{func.__name__}")
                raise CollaboratorUnavailableError(collaborator, str(exc)) from exc

        return wrapper

    return decorator
