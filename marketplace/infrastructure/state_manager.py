import json
import logging
from datetime import datetime, timezone
from typing import Any, Optional

import redis
from redis.exceptions import RedisError

from marketplace.domain.schemas import UserSession

logger = logging.getLogger(__name__)

# Bot state written when an order is delivered
STATE_RATING_ORDER = "RATING_ORDER"


class SessionStore:
    """
    Keyed store for per-customer bot sessions and per-vendor preference flags.
    Redis first, RAM fallback. Sessions are never deleted, only reset.
    """

    def __init__(self, redis_url: Optional[str] = None):
        self.redis = None
        self.redis_available = False

        # 1. Primary Memory (Redis)
        if redis_url:
            try:
                self.redis = redis.from_url(
                    redis_url,
                    decode_responses=True,
                    socket_connect_timeout=1  # Fail fast if Redis is down
                )
                self.redis.ping()
                self.redis_available = True
                logger.info("✅ SessionStore: Connected to Redis.")
            except RedisError as e:
                logger.warning(f"⚠️ SessionStore: Redis unreachable ({e}). Using RAM fallback.")
                self.redis_available = False

        # 2. Fallback Memory (RAM)
        self._memory_store: dict = {}

    # ---------------------------------------------------------
    # USER SESSIONS
    # ---------------------------------------------------------
    def get_session(self, phone: str) -> UserSession:
        """Current session for a phone. Unknown phones get a fresh, unsaved one."""
        key = f"user_session:{phone}"
        data = None

        if self.redis_available:
            try:
                data = self.redis.get(key)
            except RedisError as e:
                self._handle_redis_error(e)

        if data:
            return UserSession.model_validate_json(data)

        ram_data = self._memory_store.get(key)
        return UserSession.model_validate(ram_data) if ram_data else UserSession(phone=phone)

    def upsert_session(self, phone: str, **updates: Any) -> UserSession:
        """Merge updates into the session, creating it lazily."""
        key = f"user_session:{phone}"

        current = self.get_session(phone).model_dump()
        current.update(updates)
        current["phone"] = phone
        current["updated_at"] = datetime.now(timezone.utc)
        session = UserSession.model_validate(current)

        if self.redis_available:
            try:
                self.redis.set(key, session.model_dump_json())
            except RedisError as e:
                self._handle_redis_error(e)

        # Always write to RAM (keeps state if Redis drops later)
        self._memory_store[key] = session.model_dump()
        return session

    # ---------------------------------------------------------
    # PREFERENCES (sound, dismissed banners...)
    # ---------------------------------------------------------
    def get_preference(self, namespace: str, name: str, default: Any = None) -> Any:
        key = f"pref:{namespace}:{name}"

        if self.redis_available:
            try:
                data = self.redis.get(key)
                if data is not None:
                    return json.loads(data)
            except RedisError as e:
                self._handle_redis_error(e)

        return self._memory_store.get(key, default)

    def set_preference(self, namespace: str, name: str, value: Any):
        key = f"pref:{namespace}:{name}"

        if self.redis_available:
            try:
                self.redis.set(key, json.dumps(value))
            except RedisError as e:
                self._handle_redis_error(e)

        self._memory_store[key] = value

    def _handle_redis_error(self, e):
        """Log error and switch flag to False to stop trying Redis for a while."""
        logger.error(f"❌ Redis Error: {e}. Switching to RAM mode.")
        self.redis_available = False
