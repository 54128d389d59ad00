# votequeue/errors.py


class VoteQueueError(Exception):
    """Base class for pipeline errors."""


class QueueUnavailable(VoteQueueError):
    """The durable queue could not be reached."""


class StoreUnavailable(VoteQueueError):
    """The relational store connection is closed or dropped."""


class CredentialError(VoteQueueError):
    """A database credential could not be minted."""


class SubmissionDecodeError(VoteQueueError):
    """A queue entry is not a valid serialized submission."""


class InvalidChoice(VoteQueueError):
    def __init__(self, choice):
        super().__init__(f"Invalid choice: {choice!r}")
        self.choice = choice


class SubmissionFault(VoteQueueError):
    """Raised for every submission while fault injection is enabled."""


class RetryExhausted(VoteQueueError):
    def __init__(self, attempts, last_error=None):
        super().__init__(f"Gave up after {attempts} attempt(s): {last_error}")
        self.attempts = attempts
        self.last_error = last_error
