# votequeue/security/input_validator.py

import re
import secrets

# Validation of the vote form field and the voter identity cookie


class InputValidator:
    def __init__(self, choices, voter_id_bytes=8):
        self.choices = tuple(choices)
        self.voter_id_bytes = voter_id_bytes

        self.patterns = {
            'voter_id': re.compile(r'^[0-9a-f]{8,64}$'),
        }

    def validate_choice(self, choice):
        return isinstance(choice, str) and choice in self.choices

    def validate_voter_id(self, voter_id):
        return isinstance(voter_id, str) and bool(self.patterns['voter_id'].match(voter_id))

    def new_voter_id(self):
        # 64 random bits by default, hex encoded
        return secrets.token_hex(self.voter_id_bytes)

    def voter_id_or_new(self, voter_id):
        """Reuse a well-formed identity cookie, otherwise mint a fresh one."""
        if self.validate_voter_id(voter_id):
            return voter_id
        return self.new_voter_id()
