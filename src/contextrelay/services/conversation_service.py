import json
import logging
from typing import Any, Dict, List

from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import TimeoutError as RedisTimeoutError

from ..models import ConversationState, Message
from ..settings import get_settings
from .redis import RedisCrudService, get_redis_crud_service

logger = logging.getLogger(__name__)

CONVERSATION_KEY_PREFIX = "conversation:"


def _conversation_to_dict(state: ConversationState) -> Dict[str, Any]:
    return {
        "session_id": state.session_id,
        "messages": [m.to_dict() for m in state.messages],
    }


def _dict_to_conversation(data: Dict[str, Any]) -> ConversationState:
    messages: List[Message] = []
    for item in data.get("messages", []):
        role = item["role"]
        if role not in ("user", "assistant"):
            raise ValueError(f"unknown role {role!r}")
        messages.append(Message(role=role, content=str(item["content"])))
    return ConversationState(session_id=data.get("session_id", ""), messages=messages)


class ConversationService:
    """Persists conversation history in Redis with a TTL."""

    def __init__(self, redis_crud: RedisCrudService, ttl_seconds: int) -> None:
        self._redis = redis_crud
        self._ttl = ttl_seconds

    def _key(self, session_id: str) -> str:
        return f"{CONVERSATION_KEY_PREFIX}{session_id}"

    async def get_conversation(self, session_id: str) -> ConversationState | None:
        """Load the conversation, or None if missing or unreadable."""
        raw = await self._redis.get(self._key(session_id))
        if raw is None:
            return None
        try:
            return _dict_to_conversation(json.loads(raw))
        except (json.JSONDecodeError, KeyError, TypeError, ValueError) as e:
            logger.warning("Invalid conversation data for %s: %s", session_id, e)
            return None

    async def save_conversation(self, state: ConversationState) -> bool:
        payload = json.dumps(_conversation_to_dict(state))
        return await self._redis.set(self._key(state.session_id), payload, ttl_seconds=self._ttl)

    async def delete_conversation(self, session_id: str) -> bool:
        return await self._redis.delete(self._key(session_id))

    async def close(self) -> None:
        await self._redis.close()


_conversation_service_instance: ConversationService | None = None


async def get_conversation_service_async() -> ConversationService | None:
    """Return the conversation service once Redis is connected, or None without Redis. Cached."""
    global _conversation_service_instance
    if _conversation_service_instance is not None:
        return _conversation_service_instance
    redis_crud = get_redis_crud_service()
    if redis_crud is None:
        return None
    try:
        await redis_crud.connect()
    except (RedisConnectionError, RedisTimeoutError, ConnectionError, TimeoutError) as e:
        logger.warning("Conversation store unavailable (Redis): %s", e)
        return None
    _conversation_service_instance = ConversationService(
        redis_crud=redis_crud,
        ttl_seconds=get_settings().context_ttl_seconds,
    )
    return _conversation_service_instance


async def close_conversation_service() -> None:
    """Close the Redis connection used by the conversation store. Idempotent."""
    global _conversation_service_instance
    if _conversation_service_instance is not None:
        await _conversation_service_instance.close()
        _conversation_service_instance = None
        logger.debug("Conversation store (Redis) closed")
