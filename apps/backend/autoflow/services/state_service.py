"""
Redis-backed idempotency keys.

Twilio delivers webhooks at least once and the reminder cron may overlap
with itself, so both paths claim a short-lived key before acting. Durable
state still lives in the database; a lost Redis key only weakens
de-duplication, it never loses data.
"""

import logging
from typing import Optional

import redis

from autoflow.config import settings

logger = logging.getLogger(__name__)

# Initialize Redis connection (lazy, no network until first command)
r = redis.from_url(settings.REDIS_URL, decode_responses=True)


def _key(namespace: str, token: str) -> str:
    return f"autoflow:{namespace}:{token}"


def first_seen(namespace: str, token: Optional[str], ttl_seconds: int) -> bool:
    """
    Atomically claim ``namespace:token`` for ``ttl_seconds``.

    Returns True the first time a token is claimed and False while the
    claim is held. A missing token or an unreachable Redis counts as
    first-seen so processing is never blocked by the cache.
    """
    if not token:
        return True
    try:
        ok = r.set(_key(namespace, token), "1", nx=True, ex=ttl_seconds)
        return bool(ok)
    except redis.RedisError as e:
        logger.warning("⚠️ Redis claim failed for %s:%s, continuing without it: %s", namespace, token, e)
        return True


def release(namespace: str, token: Optional[str]) -> None:
    """Drop a claim so a later attempt can retry."""
    if not token:
        return
    try:
        r.delete(_key(namespace, token))
    except redis.RedisError as e:
        logger.warning("⚠️ Redis release failed for %s:%s: %s", namespace, token, e)


def is_duplicate_webhook(message_sid: Optional[str]) -> bool:
    """True when this provider message id was already processed."""
    return not first_seen("inbound-sms", message_sid, settings.WEBHOOK_DEDUP_TTL_SECONDS)


def claim_reminder(booking_id, window: str) -> bool:
    return first_seen("reminder", f"{booking_id}:{window}", settings.REMINDER_CLAIM_TTL_SECONDS)


def release_reminder(booking_id, window: str) -> None:
    release("reminder", f"{booking_id}:{window}")
