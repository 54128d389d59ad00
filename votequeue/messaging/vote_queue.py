# votequeue/messaging/vote_queue.py

import logging

import redis

from votequeue.errors import QueueUnavailable

logger = logging.getLogger(__name__)

REDIS_ERRORS = (redis.exceptions.ConnectionError, redis.exceptions.TimeoutError)


class VoteQueue:
    """
    FIFO of serialized submissions kept in a Redis list.

    Producers append with RPUSH, consumers take from the head with LPOP.
    The client is created lazily; any connection or timeout error marks the
    queue disconnected and is re-raised as QueueUnavailable.
    """

    def __init__(self, host='redis', port=6379, key='votes', socket_timeout=5.0, client_factory=None):
        self.host = host
        self.port = port
        self.key = key
        self.socket_timeout = socket_timeout
        self.client_factory = client_factory or self._default_client
        self._client = None
        self._connected = False

    @classmethod
    def from_settings(cls, settings, **kwargs):
        return cls(
            host=settings.redis_host,
            port=settings.redis_port,
            key=settings.queue_key,
            socket_timeout=settings.redis_socket_timeout,
            **kwargs
        )

    def _default_client(self):
        return redis.Redis(
            host=self.host,
            port=self.port,
            db=0,
            socket_timeout=self.socket_timeout,
            socket_connect_timeout=self.socket_timeout,
        )

    @property
    def address(self):
        return f"{self.host}:{self.port}"

    def is_connected(self):
        return self._client is not None and self._connected

    def connect(self):
        """Create the client and verify it with PING."""
        logger.info(f"Connecting to redis at {self.address}")
        try:
            client = self.client_factory()
            client.ping()
        except REDIS_ERRORS as e:
            self._connected = False
            raise QueueUnavailable(f"Redis at {self.address} unreachable: {e}") from e
        self._client = client
        self._connected = True
        return client

    def ping(self):
        try:
            if self._client is None:
                self.connect()
            else:
                self._client.ping()
        except REDIS_ERRORS as e:
            self._mark_disconnected(e)
        self._connected = True
        return True

    def push(self, payload):
        """Append a serialized submission to the tail of the queue."""
        if not self.is_connected():
            self.connect()
        try:
            return self._client.rpush(self.key, payload)
        except REDIS_ERRORS as e:
            self._mark_disconnected(e)

    def pop(self):
        """Remove and return the head entry, or None when the queue is empty."""
        if not self.is_connected():
            raise QueueUnavailable(f"Not connected to redis at {self.address}")
        try:
            return self._client.lpop(self.key)
        except REDIS_ERRORS as e:
            self._mark_disconnected(e)

    def length(self):
        if not self.is_connected():
            self.connect()
        try:
            return self._client.llen(self.key)
        except REDIS_ERRORS as e:
            self._mark_disconnected(e)

    def close(self):
        if self._client is not None:
            try:
                self._client.close()
            except REDIS_ERRORS as e:
                logger.debug(f"Error closing redis client: {e}")
        self._client = None
        self._connected = False

    def _mark_disconnected(self, error):
        self._connected = False
        raise QueueUnavailable(f"Lost connection to redis at {self.address}: {error}") from error
