# votequeue/operations/retry.py

import logging
import random
import time

from votequeue.errors import RetryExhausted

logger = logging.getLogger(__name__)


class RetryPolicy:
    def __init__(self, backoff_seconds=1.0, max_backoff_seconds=None, multiplier=1.0,
                 jitter_seconds=0.0, max_attempts=None, sleep=time.sleep, stop_event=None):
        """
        backoff_seconds: delay applied after the first failed attempt
        max_backoff_seconds: cap for the delay (defaults to backoff_seconds)
        multiplier: growth factor per consecutive failure, 1.0 keeps the delay fixed
        jitter_seconds: random extra delay in [0, jitter_seconds]
        max_attempts: None retries forever
        sleep: injected for tests
        stop_event: threading.Event; once set, waiting stops and retries give up
        """
        self.backoff_seconds = backoff_seconds
        self.max_backoff_seconds = backoff_seconds if max_backoff_seconds is None else max_backoff_seconds
        self.multiplier = multiplier
        self.jitter_seconds = jitter_seconds
        self.max_attempts = max_attempts
        self.sleep = sleep
        self.stop_event = stop_event

    @classmethod
    def from_settings(cls, settings, **kwargs):
        return cls(
            backoff_seconds=settings.retry_backoff_seconds,
            max_backoff_seconds=settings.retry_max_backoff_seconds,
            jitter_seconds=settings.retry_jitter_seconds,
            **kwargs
        )

    @property
    def cancelled(self):
        return self.stop_event is not None and self.stop_event.is_set()

    def delay_for(self, attempt):
        """Delay to wait after the `attempt`-th consecutive failure (1-based)."""
        delay = self.backoff_seconds * (self.multiplier ** max(attempt - 1, 0))
        delay = min(delay, self.max_backoff_seconds)
        if self.jitter_seconds:
            delay += random.uniform(0, self.jitter_seconds)
        return delay

    def wait(self, attempt):
        """Sleep for the backoff of `attempt`. Returns False if cancelled."""
        if self.cancelled:
            return False
        delay = self.delay_for(attempt)
        if self.stop_event is not None:
            # Event.wait returns True when the event was set during the wait
            return not self.stop_event.wait(delay)
        self.sleep(delay)
        return True

    def call(self, func, retry_on=(Exception,), description='operation'):
        """
        Call `func` until it succeeds.

        Exceptions listed in `retry_on` are logged and retried after the backoff.
        Raises RetryExhausted once max_attempts is reached or the policy is cancelled.
        """
        attempt = 0
        while True:
            attempt += 1
            try:
                return func()
            except retry_on as e:
                logger.warning(f"Waiting for {description}: {e}")
                if self.max_attempts is not None and attempt >= self.max_attempts:
                    raise RetryExhausted(attempt, e) from e
                if not self.wait(attempt):
                    raise RetryExhausted(attempt, e) from e
