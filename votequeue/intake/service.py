# votequeue/intake/service.py

import logging

from votequeue.errors import InvalidChoice, SubmissionFault
from votequeue.messaging.submission import Submission
from votequeue.security.input_validator import InputValidator

logger = logging.getLogger(__name__)


class IntakeService:
    """
    Accepts votes and appends them to the durable queue.

    `fault_injection` is fixed per instance: while it is on, every valid
    submission fails with SubmissionFault and nothing is enqueued.
    """

    def __init__(self, vote_queue, choices, fault_injection=False, validator=None):
        self.vote_queue = vote_queue
        self.choices = dict(choices)
        self.fault_injection = fault_injection
        self.validator = validator or InputValidator(self.choices)

    def new_voter_id(self):
        return self.validator.new_voter_id()

    def submit(self, choice, voter_id=None):
        """
        Enqueue a vote for `choice`, minting a voter id when none is given.

        Raises InvalidChoice before anything is pushed, SubmissionFault under
        fault injection and QueueUnavailable when redis cannot be reached.
        """
        if not self.validator.validate_choice(choice):
            raise InvalidChoice(choice)
        if self.fault_injection:
            raise SubmissionFault("Fault injection enabled, submission rejected")

        submission = Submission(voter_id=voter_id or self.new_voter_id(), choice=choice)
        self.vote_queue.push(submission.encode())
        logger.info(f"Received vote for {submission.choice}")
        return submission
