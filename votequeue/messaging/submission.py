# votequeue/messaging/submission.py

import json
from dataclasses import dataclass

from votequeue.errors import SubmissionDecodeError


@dataclass(frozen=True)
class Submission:
    voter_id: str
    choice: str

    def encode(self) -> str:
        """Queue wire format: {"voter_id": ..., "vote": ...}"""
        return json.dumps({'voter_id': self.voter_id, 'vote': self.choice})

    @classmethod
    def decode(cls, payload) -> 'Submission':
        if isinstance(payload, bytes):
            try:
                payload = payload.decode('utf-8')
            except UnicodeDecodeError as e:
                raise SubmissionDecodeError(f"Entry is not UTF-8: {e}") from e
        try:
            data = json.loads(payload)
        except (TypeError, ValueError) as e:
            raise SubmissionDecodeError(f"Entry is not JSON: {e}") from e

        if not isinstance(data, dict):
            raise SubmissionDecodeError("Entry must be a JSON object")
        voter_id = data.get('voter_id')
        vote = data.get('vote')
        if not isinstance(voter_id, str) or not voter_id:
            raise SubmissionDecodeError("Missing or invalid voter_id")
        if not isinstance(vote, str) or not vote:
            raise SubmissionDecodeError("Missing or invalid vote")
        return cls(voter_id=voter_id, choice=vote)
