from votequeue.messaging.submission import Submission
from votequeue.messaging.vote_queue import VoteQueue

__all__ = ['Submission', 'VoteQueue']
