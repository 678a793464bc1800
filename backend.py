import json
from typing import Optional

import redis

from constants import (CALL_HISTORY_LIMIT, CALL_RECORD_TTL_SECONDS, REDIS_HOST, REDIS_PASSWORD, REDIS_PORT,
                       REDIS_SOCKET_TIMEOUT_SECONDS)
from logging_config import get_logger
from redis_keys import REDIS_CALL_LOG_KEY, REDIS_CALL_META_KEY, REDIS_NOTIFY_CHANNEL

logger = get_logger(__name__)


class RedisBackend:
    """Call records, per-user call history and UI notifications.

    Signaling state itself is in memory; Redis only holds what outlives a
    room (call history) or leaves the process (notifications).
    """

    def __init__(self, redis_client: Optional[redis.Redis] = None):
        if redis_client is None:
            redis_client = redis.Redis(host=REDIS_HOST, port=REDIS_PORT, password=REDIS_PASSWORD, decode_responses=True,
                                       socket_connect_timeout=REDIS_SOCKET_TIMEOUT_SECONDS,
                                       socket_timeout=REDIS_SOCKET_TIMEOUT_SECONDS)
            logger.info(f"Initializing RedisBackend with connection to {REDIS_HOST}:{REDIS_PORT}")
        self.redis_client = redis_client

    def ping(self) -> bool:
        try:
            self.redis_client.ping()
            return True
        except redis.RedisError as e:
            logger.error(f"Failed to reach Redis: {e}")
            return False

    def record_call_started(self, room_id: str, call_data: dict, ttl: int = CALL_RECORD_TTL_SECONDS):
        logger.debug(f"Recording call start for room {room_id}")
        key = REDIS_CALL_META_KEY.format(room_id=room_id)
        # Redis hashes hold strings only, skip None values
        mapping = {}
        for k, v in call_data.items():
            if v is None:
                continue
            if isinstance(v, (dict, list)):
                mapping[k] = json.dumps(v)
            else:
                mapping[k] = str(v)
        self.redis_client.hset(key, mapping=mapping)
        if ttl:
            self.redis_client.expire(key, ttl)
        return room_id

    def get_call(self, room_id: str) -> Optional[dict]:
        key = REDIS_CALL_META_KEY.format(room_id=room_id)
        call_data = self.redis_client.hgetall(key)
        if not call_data:
            logger.debug(f"No call record for room {room_id}")
            return None
        result = dict(call_data)
        if "max_participants" in result:
            result["max_participants"] = int(result["max_participants"])
        return result

    def record_call_ended(self, room_id: str, record: dict, participants: list, limit: int = CALL_HISTORY_LIMIT):
        """Append the finished call to every participant's history and drop the live record."""
        logger.debug(f"Recording call end for room {room_id} ({len(participants)} participants)")
        entry = json.dumps(record)
        pipe = self.redis_client.pipeline()
        for user_id in participants:
            log_key = REDIS_CALL_LOG_KEY.format(user_id=user_id)
            pipe.lpush(log_key, entry)
            pipe.ltrim(log_key, 0, limit - 1)
        pipe.delete(REDIS_CALL_META_KEY.format(room_id=room_id))
        pipe.execute()
        return True

    def get_call_history(self, user_id: str, limit: int = CALL_HISTORY_LIMIT) -> list:
        log_key = REDIS_CALL_LOG_KEY.format(user_id=user_id)
        entries = self.redis_client.lrange(log_key, 0, limit - 1)
        history = []
        for entry in entries:
            try:
                history.append(json.loads(entry))
            except json.JSONDecodeError:
                logger.warning(f"Skipping malformed call log entry for {user_id}")
        return history

    def get_notify_channel_name(self, user_id: str) -> str:
        return REDIS_NOTIFY_CHANNEL.format(user_id=user_id)

    def publish_notification(self, user_id: str, event: dict) -> int:
        """Publish a call notification to the user's channel. Returns the subscriber count."""
        channel = self.get_notify_channel_name(user_id)
        subscribers = self.redis_client.publish(channel, json.dumps(event))
        logger.debug(f"Published {event.get('type')} to {channel}, {subscribers} subscribers")
        return subscribers
