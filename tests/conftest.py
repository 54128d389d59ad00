import pytest
import redis

from votequeue.config import Settings
from votequeue.database.store import TallyStore
from votequeue.messaging.vote_queue import VoteQueue
from votequeue.operations.retry import RetryPolicy


class FakeRedisServer:
    """In-memory stand-in for the redis server behind VoteQueue."""

    def __init__(self):
        self.lists = {}
        self.down = False
        self.clients_created = 0

    def client(self):
        self.clients_created += 1
        return FakeRedisClient(self)


class FakeRedisClient:
    def __init__(self, server):
        self.server = server

    def _check(self):
        if self.server.down:
            raise redis.exceptions.ConnectionError("Connection refused")

    def ping(self):
        self._check()
        return True

    def rpush(self, key, value):
        self._check()
        items = self.server.lists.setdefault(key, [])
        items.append(value.encode() if isinstance(value, str) else value)
        return len(items)

    def lpop(self, key):
        self._check()
        items = self.server.lists.get(key)
        if not items:
            return None
        return items.pop(0)

    def llen(self, key):
        self._check()
        return len(self.server.lists.get(key, []))

    def close(self):
        pass


class FakeRdsClient:
    def __init__(self):
        self.calls = []

    def generate_db_auth_token(self, **kwargs):
        self.calls.append(kwargs)
        return f"token-{len(self.calls)}"


class FakeClock:
    def __init__(self, start=1000.0):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


class SleepRecorder:
    def __init__(self):
        self.calls = []

    def __call__(self, seconds):
        self.calls.append(seconds)


@pytest.fixture
def redis_server():
    return FakeRedisServer()


@pytest.fixture
def vote_queue(redis_server):
    return VoteQueue(host='redis', port=6379, key='votes', client_factory=redis_server.client)


@pytest.fixture
def sleeps():
    return SleepRecorder()


@pytest.fixture
def retry_policy(sleeps):
    return RetryPolicy(backoff_seconds=1.0, sleep=sleeps)


@pytest.fixture
def database_url(tmp_path):
    return f"sqlite:///{tmp_path / 'votes.db'}"


@pytest.fixture
def store(database_url, retry_policy):
    tally_store = TallyStore(database_url, retry_policy=retry_policy)
    yield tally_store
    tally_store.close()


@pytest.fixture
def settings(database_url):
    return Settings(
        database_url=database_url,
        hostname='test-host',
        secret_key='test-secret',
        ratelimit_storage_uri='memory://',
    )


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def rds_client():
    return FakeRdsClient()
