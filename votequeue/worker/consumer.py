# votequeue/worker/consumer.py

"""
Worker consumer: drains the vote queue into the tally store.

A single-threaded polling loop. Each tick checks queue health, refreshes an
expiring database credential before it lapses, pops at most one entry and
writes it. When the queue is empty the store connection receives a keep-alive
probe instead. Submissions popped while the store cannot be reopened are lost;
they are never pushed back onto the queue.
"""

import logging
import time
from enum import Enum

from sqlalchemy.exc import SQLAlchemyError

from votequeue.database.store import TallyStore
from votequeue.errors import QueueUnavailable, StoreUnavailable, SubmissionDecodeError
from votequeue.messaging.submission import Submission
from votequeue.messaging.vote_queue import VoteQueue
from votequeue.operations.retry import RetryPolicy
from votequeue.security.credentials import credential_from_settings

logger = logging.getLogger(__name__)


class WorkerState(Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    DEGRADED = "degraded"


class TickOutcome(Enum):
    QUEUE_DOWN = "queue_down"
    IDLE = "idle"
    PROCESSED = "processed"
    DROPPED = "dropped"
    LOST = "lost"


class WorkerConsumer:
    def __init__(self, vote_queue, store, poll_interval=0.1, retry_policy=None, sleep=time.sleep):
        self.vote_queue = vote_queue
        self.store = store
        self.poll_interval = poll_interval
        self.retry_policy = retry_policy or RetryPolicy(sleep=sleep)
        self.sleep = sleep
        self.state = WorkerState.DISCONNECTED
        self._queue_failures = 0
        self.stats = {
            "processed": 0,
            "dropped": 0,
            "lost": 0,
            "keepalives": 0,
            "credential_refreshes": 0,
            "queue_reconnects": 0,
        }

    def _set_state(self, state):
        if state != self.state:
            logger.info(f"Worker state {self.state.value} -> {state.value}")
            self.state = state

    def _update_state(self):
        queue_up = self.vote_queue.is_connected()
        store_up = self.store.is_open
        if queue_up and store_up:
            self._set_state(WorkerState.CONNECTED)
        elif queue_up or store_up:
            self._set_state(WorkerState.DEGRADED)
        else:
            self._set_state(WorkerState.DISCONNECTED)

    def start(self):
        """Connect both endpoints, blocking until each accepts a connection."""
        self._set_state(WorkerState.CONNECTING)
        self.retry_policy.call(self.vote_queue.connect, retry_on=(QueueUnavailable,), description='redis')
        self.store.open()
        self._update_state()

    def run_forever(self):
        self.start()
        while True:
            self.sleep(self.poll_interval)
            self.tick()

    def tick(self):
        """Run one iteration of the loop and return its TickOutcome."""
        try:
            if not self._ensure_queue():
                return TickOutcome.QUEUE_DOWN

            self._refresh_credentials_if_due()

            try:
                payload = self.vote_queue.pop()
            except QueueUnavailable as e:
                logger.error(f"Queue pop failed: {e}")
                return TickOutcome.QUEUE_DOWN

            if payload is None:
                self._keep_alive()
                return TickOutcome.IDLE

            try:
                submission = Submission.decode(payload)
            except SubmissionDecodeError as e:
                self.stats["dropped"] += 1
                logger.error(f"Dropping malformed queue entry {payload!r}: {e}")
                return TickOutcome.DROPPED

            logger.info(f"Processing vote for '{submission.choice}' by '{submission.voter_id}'")
            return self._write(submission)
        finally:
            self._update_state()

    def _ensure_queue(self):
        if self.vote_queue.is_connected():
            self._queue_failures = 0
            return True

        self._set_state(WorkerState.CONNECTING)
        logger.warning("Reconnecting Redis")
        try:
            self.vote_queue.connect()
        except QueueUnavailable as e:
            self._queue_failures += 1
            logger.error(f"Waiting for redis: {e}")
            self.retry_policy.wait(self._queue_failures)
            return False

        self._queue_failures = 0
        self.stats["queue_reconnects"] += 1
        return True

    def _refresh_credentials_if_due(self):
        if not self.store.needs_credential_refresh():
            return
        self.stats["credential_refreshes"] += 1
        if not self.store.refresh_credentials() and not self.store.is_open:
            logger.error("Store unavailable after credential refresh")

    def _keep_alive(self):
        if not self.store.is_open:
            return
        try:
            self.store.keep_alive()
            self.stats["keepalives"] += 1
        except StoreUnavailable as e:
            logger.error(f"Keep-alive failed: {e}")

    def _write(self, submission):
        if not self.store.is_open:
            logger.warning("Reconnecting DB")
            if not self.store.try_open():
                return self._lose(submission, "store unavailable")

        try:
            self.store.upsert(submission.voter_id, submission.choice)
        except StoreUnavailable as e:
            return self._lose(submission, str(e))
        except SQLAlchemyError as e:
            self.stats["dropped"] += 1
            logger.error(f"Rejected vote by '{submission.voter_id}': {e}")
            return TickOutcome.DROPPED

        self.stats["processed"] += 1
        return TickOutcome.PROCESSED

    def _lose(self, submission, reason):
        self.stats["lost"] += 1
        logger.error(f"Vote by '{submission.voter_id}' not recorded ({reason})")
        return TickOutcome.LOST


def build_worker(settings):
    retry_policy = RetryPolicy.from_settings(settings)
    vote_queue = VoteQueue.from_settings(settings)
    store = TallyStore.from_settings(
        settings, credential=credential_from_settings(settings), retry_policy=retry_policy
    )
    return WorkerConsumer(vote_queue, store, poll_interval=settings.poll_interval, retry_policy=retry_policy)
