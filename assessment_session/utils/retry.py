import asyncio
import logging
from typing import Any, Awaitable, Callable, Iterable, Optional

logger = logging.getLogger(__name__)

TRANSIENT_STATUSES = (429, 500, 502, 503, 504)


def is_empty(result: Any) -> bool:
    return result is None or result == {} or result == []


async def retry_async(
    func: Callable[..., Awaitable[Any]],
    *args,
    attempts: int = 3,
    delay: float = 1.0,
    backoff: float = 1.0,
    retry_statuses: Iterable[int] = TRANSIENT_STATUSES,
    description: str = "request",
    **kwargs,
) -> Optional[Any]:
    """Runs ``func`` up to ``attempts`` times.

    Null/empty results and errors carrying a transient ``status`` are retried
    after ``delay`` seconds (multiplied by ``backoff`` each time). Other errors
    propagate immediately. Returns None when every attempt came back empty;
    re-raises the last transient error when every attempt failed with one.
    """
    last_error: Optional[Exception] = None
    current_delay = delay
    for attempt in range(attempts):
        try:
            result = await func(*args, **kwargs)
        except Exception as e:
            status = getattr(e, "status", None)
            if status not in retry_statuses:
                raise
            last_error = e
            logger.warning(f"{description} failed (attempt {attempt + 1}/{attempts}): {e}")
        else:
            if not is_empty(result):
                return result
            last_error = None
            logger.warning(f"{description} returned an empty response (attempt {attempt + 1}/{attempts})")

        if attempt < attempts - 1:
            await asyncio.sleep(current_delay)
            current_delay *= backoff

    logger.error(f"{description} did not succeed after {attempts} attempts")
    if last_error is not None:
        raise last_error
    return None
