"""
Explicit success/failure values for backend calls and a single-fallback
combinator.
"""

from dataclasses import dataclass
from typing import Awaitable, Callable, Generic, TypeVar, Union
import logging


logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class Ok(Generic[T]):
    value: T
    ok: bool = True


@dataclass(frozen=True)
class Err:
    error: Exception
    ok: bool = False


Result = Union[Ok[T], Err]


async def with_fallback(
    primary: Callable[[], Awaitable[Result]],
    fallback: Callable[[], Awaitable[Result]],
    label: str = "call",
) -> Result:
    """
    Run `primary`; if it returns Err, run `fallback` exactly once.

    Both callables must return a Result rather than raise. The fallback's
    result is returned as-is, so a double failure surfaces the fallback error.
    """
    result = await primary()
    if result.ok:
        return result

    logger.warning(f"[FALLBACK] {label} primary failed: {result.error}; trying fallback")
    return await fallback()
