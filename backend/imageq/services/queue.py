"""
Durable at-least-once queues on Redis lists.

Each queue is a ready list. Taking a message moves it atomically into an
in-flight list owned by the consumer (LMOVE), so a message is never lost
between dequeue and acknowledgement:

    publish  -> LPUSH <queue>
    get      -> LMOVE <queue> -> <queue>:processing:<consumer>
    ack      -> LREM from the in-flight list
    nack     -> LREM, and LPUSH back to <queue> when requeueing
    recover  -> in-flight list back to the front of <queue> (after a crash)

Redis hands each message to exactly one LMOVE caller, which is what lets
several worker processes compete for the same queue. Delivery attempts are
counted per message body in <queue>:attempts.
"""
import hashlib
import logging
import threading
from dataclasses import dataclass, field
from typing import Iterator, Optional

import redis
from redis import Redis

from imageq.core.errors import PublishError

logger = logging.getLogger(__name__)

QUEUE_REGISTRY_KEY = "imageq:queues"


@dataclass
class Delivery:
    """one message taken from a queue; the handle used to ack or nack it"""
    queue: str
    body: bytes
    processing_key: str
    attempt: int = 1
    settled: bool = field(default=False, compare=False)

    @property
    def digest(self) -> str:
        return message_digest(self.body)


def message_digest(body: bytes) -> str:
    return hashlib.sha1(body).hexdigest()


class RedisBroker:
    def __init__(self, redis_conn: Redis, consumer_name: str = "worker"):
        self.redis = redis_conn
        self.consumer_name = consumer_name

    # key layout
    def processing_key(self, queue_name: str) -> str:
        return f"{queue_name}:processing:{self.consumer_name}"

    def attempts_key(self, queue_name: str) -> str:
        return f"{queue_name}:attempts"

    def dead_letter_key(self, queue_name: str) -> str:
        return f"{queue_name}:dead"

    def declare(self, queue_name: str, durable: bool = True):
        """register a queue; durability is the redis server's AOF/RDB setting"""
        if not durable:
            logger.warning(f"queue {queue_name} declared non-durable, redis persistence still applies")
        self.redis.sadd(QUEUE_REGISTRY_KEY, queue_name)
        logger.info(f"queue declared: {queue_name}")

    def declared_queues(self) -> list:
        return sorted(q.decode() if isinstance(q, bytes) else q for q in self.redis.smembers(QUEUE_REGISTRY_KEY))

    def publish(self, queue_name: str, body: bytes):
        """append a message to the ready list"""
        try:
            self.redis.lpush(queue_name, body)
        except redis.RedisError as e:
            raise PublishError(f"error publishing to {queue_name}: {e}") from e
        logger.info(f"message published to {queue_name} ({len(body)} bytes)")

    def get(self, queue_name: str, timeout: Optional[float] = None) -> Optional[Delivery]:
        """
        take at most one message.
        timeout=None returns immediately, otherwise block up to timeout seconds.
        """
        processing = self.processing_key(queue_name)
        if timeout is None:
            body = self.redis.lmove(queue_name, processing, "RIGHT", "LEFT")
        else:
            body = self.redis.blmove(queue_name, processing, timeout, "RIGHT", "LEFT")
        if body is None:
            return None

        attempt = int(self.redis.hincrby(self.attempts_key(queue_name), message_digest(body), 1))
        return Delivery(queue=queue_name, body=body, processing_key=processing, attempt=attempt)

    def consume(
        self,
        queue_name: str,
        stop_event: threading.Event,
        poll_timeout: float = 1.0,
    ) -> Iterator[Delivery]:
        """yield deliveries one at a time until stop_event is set"""
        while not stop_event.is_set():
            delivery = self.get(queue_name, timeout=poll_timeout)
            if delivery is not None:
                yield delivery

    def _settle(self, delivery: Delivery, action: str) -> bool:
        if delivery.settled:
            logger.warning(f"duplicate {action} ignored for message on {delivery.queue} ({delivery.digest[:12]})")
            return False
        delivery.settled = True
        return True

    def ack(self, delivery: Delivery) -> bool:
        """remove the message for good. a second ack is a no-op"""
        if not self._settle(delivery, "ack"):
            return False
        pipe = self.redis.pipeline()
        pipe.lrem(delivery.processing_key, 1, delivery.body)
        pipe.hdel(self.attempts_key(delivery.queue), delivery.digest)
        removed, _ = pipe.execute()
        if not removed:
            logger.warning(f"ack for message not in flight on {delivery.queue} ({delivery.digest[:12]})")
            return False
        return True

    def nack(self, delivery: Delivery, requeue: bool) -> bool:
        """reject the message; requeue puts it at the back of the ready list"""
        if not self._settle(delivery, "nack"):
            return False
        pipe = self.redis.pipeline()
        pipe.lrem(delivery.processing_key, 1, delivery.body)
        if requeue:
            pipe.lpush(delivery.queue, delivery.body)
        else:
            pipe.hdel(self.attempts_key(delivery.queue), delivery.digest)
        removed = pipe.execute()[0]
        if not removed:
            logger.warning(f"nack for message not in flight on {delivery.queue} ({delivery.digest[:12]})")
            if requeue:
                # it was pushed anyway; take it back out so it isn't duplicated
                self.redis.lrem(delivery.queue, 1, delivery.body)
            return False
        return True

    def dead_letter(self, delivery: Delivery, reason: str) -> bool:
        """park the message on <queue>:dead instead of retrying it"""
        if not self._settle(delivery, "dead-letter"):
            return False
        pipe = self.redis.pipeline()
        pipe.lrem(delivery.processing_key, 1, delivery.body)
        pipe.lpush(self.dead_letter_key(delivery.queue), delivery.body)
        pipe.hdel(self.attempts_key(delivery.queue), delivery.digest)
        pipe.execute()
        logger.warning(f"message dead-lettered from {delivery.queue}: {reason}")
        return True

    def recover(self, queue_name: str) -> int:
        """return messages this consumer left in flight to the front of the queue"""
        processing = self.processing_key(queue_name)
        recovered = 0
        while self.redis.lmove(processing, queue_name, "RIGHT", "RIGHT") is not None:
            recovered += 1
        if recovered:
            logger.warning(f"recovered {recovered} in-flight message(s) on {queue_name}")
        return recovered

    def depth(self, queue_name: str) -> int:
        return int(self.redis.llen(queue_name))

    def dead_letter_depth(self, queue_name: str) -> int:
        return int(self.redis.llen(self.dead_letter_key(queue_name)))

    def ping(self) -> bool:
        return bool(self.redis.ping())
