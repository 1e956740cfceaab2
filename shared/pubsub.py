import logging
from collections import deque
from threading import Lock
from typing import Dict, List, Optional

import redis

from .events import Event

logger = logging.getLogger(__name__)


class EventPublisher:
    """
    Fire-and-forget notification of tournament events.

    With a Redis client events go to the tournament channel, the global
    announcements channel and a capped per-tournament event log. Without one
    the publisher runs in local mode: events are logged and kept in memory.
    Delivery failures are logged and never reach the caller.
    """

    GLOBAL_CHANNEL = "global:announcements"

    def __init__(self, redis_client: Optional[redis.Redis] = None, log_size: int = 1000):
        self.redis = redis_client
        self.log_size = log_size
        self._local_log: Dict[str, deque] = {}
        self._lock = Lock()

        if self.redis is None:
            logger.info("EventPublisher running in local mode (no Redis)")

    @classmethod
    def from_url(cls, redis_url: Optional[str], log_size: int = 1000) -> "EventPublisher":
        if not redis_url:
            return cls(None, log_size=log_size)
        client = redis.from_url(
            redis_url,
            decode_responses=True,
            socket_connect_timeout=5,
            socket_timeout=5
        )
        return cls(client, log_size=log_size)

    @property
    def is_local(self) -> bool:
        return self.redis is None

    @staticmethod
    def channel_for(tournament_id: str) -> str:
        return f"tournament:{tournament_id}:events"

    @staticmethod
    def log_key_for(tournament_id: str) -> str:
        return f"tournament:{tournament_id}:event_log"

    def publish(self, event: Event) -> bool:
        """Publish an event. Returns False when delivery failed."""
        if self.is_local:
            logger.debug(f"Local mode: {event.type} for {event.tournament_id}: {event.data}")
            with self._lock:
                log = self._local_log.setdefault(event.tournament_id, deque(maxlen=self.log_size))
                log.appendleft(event)
            return True

        payload = event.to_json()
        try:
            self.redis.publish(self.channel_for(event.tournament_id), payload)
            self.redis.publish(self.GLOBAL_CHANNEL, payload)
            key = self.log_key_for(event.tournament_id)
            self.redis.lpush(key, payload)
            self.redis.ltrim(key, 0, self.log_size - 1)
            return True
        except redis.exceptions.RedisError as e:
            logger.warning(f"Failed to publish {event.type} for {event.tournament_id}: {e}")
            return False

    def get_recent_events(self, tournament_id: str, count: int = 50) -> List[Event]:
        """Most recent events first."""
        if self.is_local:
            with self._lock:
                return list(self._local_log.get(tournament_id, ()))[:count]

        try:
            events_json = self.redis.lrange(self.log_key_for(tournament_id), 0, count - 1)
        except redis.exceptions.RedisError as e:
            logger.warning(f"Failed to read event log for {tournament_id}: {e}")
            return []
        return [Event.from_json(e) for e in events_json]
