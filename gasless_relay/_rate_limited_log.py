"""
Thread-safe rate-limited logging.

Diagnostic messages derived from client input (for example a signer mismatch
reported for every request a broken wallet sends) go through here so that one
misbehaving caller cannot flood the relay's logs.
"""
import logging
import threading
from typing import Dict, Optional

from cachetools import TTLCache

logger = logging.getLogger(__name__)

_MAX_KEYS_PER_INTERVAL = 1024

# One TTLCache per suppression interval, so each key expires after its own interval
_log_caches: Dict[int, TTLCache] = {}
_log_cache_lock = threading.RLock()


def _cache_for(interval: int) -> TTLCache:
    cache = _log_caches.get(interval)
    if cache is None:
        cache = TTLCache(maxsize=_MAX_KEYS_PER_INTERVAL, ttl=interval)
        _log_caches[interval] = cache
    return cache


def rate_limited_log(
    message: str,
    level: str = "warning",
    interval: int = 60,
    logger_instance: Optional[logging.Logger] = None,
    key: Optional[str] = None,
) -> bool:
    """
    Log a message at most once per ``interval`` seconds per key.

    Args:
        message: Message to log
        level: Log level (debug, info, warning, error, critical)
        interval: Minimum interval between two logs of the same key, in seconds
        logger_instance: Logger to use (defaults to module logger)
        key: Suppression key; defaults to ``level:message``

    Returns:
        True if the message was emitted, False if it was suppressed
    """
    log_instance = logger_instance or logger
    log_method = getattr(log_instance, level.lower(), log_instance.warning)
    cache_key = key or f"{level}:{message}"

    with _log_cache_lock:
        cache = _cache_for(interval)
        if cache_key in cache:
            return False
        cache[cache_key] = True

    log_method(message)
    return True


def reset_rate_limits() -> None:
    """Forget every suppressed key."""
    with _log_cache_lock:
        _log_caches.clear()
