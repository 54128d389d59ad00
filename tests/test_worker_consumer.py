import pytest

from votequeue.database.store import TallyStore
from votequeue.messaging.submission import Submission
from votequeue.messaging.vote_queue import VoteQueue
from votequeue.security.credentials import RdsIamCredential
from votequeue.worker.consumer import TickOutcome, WorkerConsumer, WorkerState


def enqueue(producer, voter_id, choice):
    producer.push(Submission(voter_id=voter_id, choice=choice).encode())


def drain(consumer, limit=100):
    outcomes = []
    for _ in range(limit):
        outcome = consumer.tick()
        if outcome == TickOutcome.IDLE:
            return outcomes
        outcomes.append(outcome)
    raise AssertionError("queue did not drain")


@pytest.fixture
def producer(redis_server):
    return VoteQueue(key="votes", client_factory=redis_server.client)


@pytest.fixture
def consumer(vote_queue, store, retry_policy, sleeps):
    return WorkerConsumer(vote_queue, store, retry_policy=retry_policy, sleep=sleeps)


def test_starts_disconnected_then_connects(consumer):
    assert consumer.state == WorkerState.DISCONNECTED
    consumer.start()
    assert consumer.state == WorkerState.CONNECTED


def test_round_trip_updates_single_row(producer, consumer, vote_queue, store):
    consumer.start()
    enqueue(producer, "abc", "a")
    assert consumer.tick() == TickOutcome.PROCESSED
    assert store.get_choice("abc") == "a"

    enqueue(producer, "abc", "b")
    assert consumer.tick() == TickOutcome.PROCESSED
    assert store.get_choice("abc") == "b"
    assert store.row_count() == 1


def test_last_submission_per_voter_wins(producer, consumer, vote_queue, store):
    consumer.start()
    sequence = [("v1", "a"), ("v2", "b"), ("v1", "b"), ("v1", "a"), ("v2", "a"), ("v1", "b")]
    for voter_id, choice in sequence:
        enqueue(producer, voter_id, choice)

    assert drain(consumer) == [TickOutcome.PROCESSED] * len(sequence)
    assert store.get_choice("v1") == "b"
    assert store.get_choice("v2") == "a"
    assert consumer.stats["processed"] == len(sequence)


def test_redelivered_submission_leaves_row_unchanged(producer, consumer, vote_queue, store):
    consumer.start()
    enqueue(producer, "abc", "a")
    enqueue(producer, "abc", "a")
    drain(consumer)
    assert store.get_choice("abc") == "a"
    assert store.row_count() == 1


def test_aggregate_after_processing(producer, consumer, vote_queue, store):
    consumer.start()
    for voter_id, choice in [("1", "a"), ("2", "a"), ("3", "b")]:
        enqueue(producer, voter_id, choice)
    drain(consumer)
    assert store.count_by_choice() == {"a": 2, "b": 1}


def test_malformed_entry_is_dropped_and_loop_continues(producer, consumer, vote_queue, store):
    consumer.start()
    producer.push("not json")
    enqueue(producer, "abc", "a")

    assert consumer.tick() == TickOutcome.DROPPED
    assert consumer.tick() == TickOutcome.PROCESSED
    assert consumer.stats["dropped"] == 1
    assert vote_queue.length() == 0
    assert store.get_choice("abc") == "a"


def test_empty_queue_sends_keep_alive(consumer):
    consumer.start()
    assert consumer.tick() == TickOutcome.IDLE
    assert consumer.tick() == TickOutcome.IDLE
    assert consumer.stats["keepalives"] == 2


def test_submissions_during_store_outage_are_lost_not_requeued(producer, consumer, vote_queue, store, monkeypatch):
    consumer.start()
    enqueue(producer, "abc", "a")
    consumer.tick()

    # connection drops and cannot be reopened
    store._connection.invalidate()
    monkeypatch.setattr(store, "try_open", lambda: False)
    enqueue(producer, "x", "a")
    enqueue(producer, "y", "b")

    assert consumer.tick() == TickOutcome.LOST
    assert consumer.state == WorkerState.DEGRADED
    assert consumer.tick() == TickOutcome.LOST
    assert vote_queue.length() == 0
    assert consumer.stats["lost"] == 2

    # endpoint heals: the next write reopens the connection
    monkeypatch.undo()
    enqueue(producer, "abc", "b")
    assert consumer.tick() == TickOutcome.PROCESSED
    assert consumer.state == WorkerState.CONNECTED

    assert store.get_choice("abc") == "b"
    assert store.get_choice("x") is None
    assert store.get_choice("y") is None
    assert store.row_count() == 1


def test_queue_outage_retries_with_backoff(producer, consumer, vote_queue, redis_server, sleeps):
    consumer.start()
    redis_server.down = True

    assert consumer.tick() == TickOutcome.QUEUE_DOWN
    assert consumer.state == WorkerState.DEGRADED

    assert consumer.tick() == TickOutcome.QUEUE_DOWN
    assert consumer.tick() == TickOutcome.QUEUE_DOWN
    assert sleeps.calls == [1.0, 1.0]

    redis_server.down = False
    enqueue(producer, "abc", "a")
    assert consumer.tick() == TickOutcome.PROCESSED
    assert consumer.stats["queue_reconnects"] == 1
    assert consumer.state == WorkerState.CONNECTED


def test_both_links_down_is_disconnected(consumer, store, redis_server):
    consumer.start()
    store.close()
    redis_server.down = True
    consumer.tick()
    assert consumer.state == WorkerState.DISCONNECTED


def test_token_refreshed_before_expiry_without_traffic(vote_queue, database_url, retry_policy, sleeps,
                                                        rds_client, clock):
    credential = RdsIamCredential("db", 5432, "app_user", "us-west-2", ttl_seconds=600,
                                  refresh_margin_seconds=60, rds_client=rds_client, clock=clock)
    store = TallyStore(database_url, credential=credential, retry_policy=retry_policy)
    consumer = WorkerConsumer(vote_queue, store, retry_policy=retry_policy, sleep=sleeps)
    try:
        consumer.start()
        credential.mint()
        first_mint = credential.minted_at

        clock.advance(539)
        assert consumer.tick() == TickOutcome.IDLE
        assert credential.mint_count == 1

        clock.advance(1)
        assert consumer.tick() == TickOutcome.IDLE
        assert credential.mint_count == 2
        assert credential.minted_at - first_mint <= 540
        assert consumer.stats["credential_refreshes"] == 1
        assert consumer.state == WorkerState.CONNECTED
        assert store.is_open is True
    finally:
        store.close()


def test_run_forever_sleeps_poll_interval_between_ticks(producer, vote_queue, store, retry_policy):
    class StopLoop(Exception):
        pass

    calls = []

    def sleep(seconds):
        calls.append(seconds)
        if len(calls) == 3:
            raise StopLoop()

    consumer = WorkerConsumer(vote_queue, store, poll_interval=0.1, retry_policy=retry_policy, sleep=sleep)
    enqueue(producer, "abc", "a")
    with pytest.raises(StopLoop):
        consumer.run_forever()

    assert calls == [0.1, 0.1, 0.1]
    assert store.get_choice("abc") == "a"


def test_failed_token_mint_keeps_store_open_between_retries(vote_queue, database_url, retry_policy, sleeps,
                                                            rds_client, clock):
    from botocore.exceptions import NoCredentialsError

    credential = RdsIamCredential("db", 5432, "app_user", "us-west-2", ttl_seconds=600,
                                  refresh_margin_seconds=60, rds_client=rds_client, clock=clock)
    store = TallyStore(database_url, credential=credential, retry_policy=retry_policy, clock=clock)
    consumer = WorkerConsumer(vote_queue, store, retry_policy=retry_policy, sleep=sleeps)

    def refused(**kwargs):
        raise NoCredentialsError()

    try:
        consumer.start()
        credential.mint()
        clock.advance(540)
        rds_client.generate_db_auth_token = refused

        outcomes = [consumer.tick() for _ in range(5)]
        assert outcomes == [TickOutcome.IDLE] * 5
        assert store.is_open is True
        assert consumer.state == WorkerState.CONNECTED
        assert consumer.stats["credential_refreshes"] == 1
        assert consumer.stats["keepalives"] == 5

        # next attempt only after the retry policy's backoff
        clock.advance(1)
        del rds_client.generate_db_auth_token
        assert consumer.tick() == TickOutcome.IDLE
        assert consumer.stats["credential_refreshes"] == 2
        assert credential.mint_count == 2
        assert store.is_open is True
    finally:
        store.close()
