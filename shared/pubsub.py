import os
import logging
import redis
from typing import Callable, Optional
from .events import Event

logger = logging.getLogger(__name__)

GLOBAL_CHANNEL = "global:announcements"


def tournament_channel(tournament_id) -> str:
    return f"tournament:{tournament_id}:events"


class PubSubClient:
    """Fans tournament events out over Redis pub/sub and keeps a short log."""

    EVENT_LOG_SIZE = 1000

    def __init__(self, redis_url: str = None, redis_client: Optional[redis.Redis] = None):
        self.redis_url = redis_url or os.getenv('REDIS_URL', 'redis://localhost:6379')
        self.redis = redis_client or redis.from_url(
            self.redis_url,
            decode_responses=True,
            socket_connect_timeout=5,
            socket_timeout=5
        )
        self._pubsub = None
        self._handlers = {}

    def publish(self, channel: str, event: Event):
        self.redis.publish(channel, event.to_json())

    def publish_tournament_event(self, tournament_id, event: Event):
        self.publish(tournament_channel(tournament_id), event)
        self.redis.publish(GLOBAL_CHANNEL, event.to_json())

    def log_event(self, tournament_id, event: Event):
        key = f"tournament:{tournament_id}:event_log"
        self.redis.lpush(key, event.to_json())
        self.redis.ltrim(key, 0, self.EVENT_LOG_SIZE - 1)

    def get_recent_events(self, tournament_id, count: int = 50) -> list:
        key = f"tournament:{tournament_id}:event_log"
        events_json = self.redis.lrange(key, 0, count - 1)
        return [Event.from_json(e) for e in events_json]

    def broadcast(self, event: Event) -> bool:
        """Publish and log ``event``; Redis outages never fail the caller."""
        try:
            self.publish_tournament_event(event.tournament_id, event)
            self.log_event(event.tournament_id, event)
            return True
        except redis.RedisError as e:
            logger.warning(f"Failed to broadcast {event.to_dict()['type']} for tournament {event.tournament_id}: {e}")
            return False

    def subscribe(self, channel: str, handler: Callable[[Event], None]):
        if self._pubsub is None:
            self._pubsub = self.redis.pubsub()

        self._handlers[channel] = handler
        self._pubsub.subscribe(**{channel: self._message_handler})

    def subscribe_tournament(self, tournament_id, handler: Callable[[Event], None]):
        self.subscribe(tournament_channel(tournament_id), handler)

    def _message_handler(self, message):
        if message['type'] == 'message':
            channel = message['channel']
            if channel in self._handlers:
                try:
                    event = Event.from_json(message['data'])
                    self._handlers[channel](event)
                except (ValueError, KeyError) as e:
                    logger.error(f"Error handling message on {channel}: {e}")

    def listen(self, tournament_id, timeout: float = 30):
        """Yield raw event payloads for one tournament, ``None`` on idle timeouts."""
        sse_redis = redis.from_url(
            self.redis_url,
            decode_responses=True,
            socket_timeout=None,
            socket_connect_timeout=5
        )
        pubsub = sse_redis.pubsub(ignore_subscribe_messages=True)
        pubsub.subscribe(tournament_channel(tournament_id))
        try:
            while True:
                message = pubsub.get_message(timeout=timeout)
                if message and message['type'] == 'message':
                    yield message['data']
                else:
                    yield None
        finally:
            pubsub.close()

    def ping(self) -> bool:
        try:
            return bool(self.redis.ping())
        except redis.RedisError:
            return False

    def stop_listening(self):
        if self._pubsub:
            self._pubsub.close()
            self._pubsub = None
