# votequeue/security/credentials.py

import logging
import time

from botocore.exceptions import BotoCoreError, ClientError

from votequeue.errors import CredentialError

logger = logging.getLogger(__name__)


class StaticCredential:
    """Plain database password. Never expires."""

    expires = False

    def __init__(self, password):
        self._password = password
        self.mint_count = 0

    def password(self):
        return self._password

    def needs_refresh(self):
        return False

    def refresh(self):
        return self._password


# Short-lived RDS IAM authentication tokens
class RdsIamCredential:
    expires = True

    def __init__(self, host, port, user, region, ttl_seconds=900, refresh_margin_seconds=300,
                 rds_client=None, clock=time.monotonic):
        """
        ttl_seconds: validity window of a generated token (RDS tokens live 15 minutes)
        refresh_margin_seconds: how long before expiry a new token is minted
        rds_client: boto3 RDS client, created lazily when omitted
        clock: monotonic time source, injected for tests
        """
        if refresh_margin_seconds >= ttl_seconds:
            raise ValueError("refresh_margin_seconds must be smaller than ttl_seconds")
        self.host = host
        self.port = port
        self.user = user
        self.region = region
        self.ttl_seconds = ttl_seconds
        self.refresh_margin_seconds = refresh_margin_seconds
        self.clock = clock
        self._rds_client = rds_client
        self._token = None
        self.minted_at = None
        self.mint_count = 0

    @property
    def rds_client(self):
        """Lazy initialization of the RDS client."""
        if self._rds_client is None:
            import boto3
            self._rds_client = boto3.client('rds', region_name=self.region)
        return self._rds_client

    @property
    def refresh_after(self):
        return self.ttl_seconds - self.refresh_margin_seconds

    def mint(self):
        try:
            token = self.rds_client.generate_db_auth_token(
                DBHostname=self.host,
                Port=self.port,
                DBUsername=self.user,
                Region=self.region,
            )
        except (BotoCoreError, ClientError) as e:
            raise CredentialError(f"Could not generate IAM auth token for {self.host}:{self.port}: {e}") from e
        self._token = token
        self.minted_at = self.clock()
        self.mint_count += 1
        logger.info(f"Generated IAM auth token for RDS: {self.host}:{self.port}")
        return token

    def password(self):
        if self._token is None:
            return self.mint()
        return self._token

    def age(self):
        if self.minted_at is None:
            return None
        return self.clock() - self.minted_at

    def needs_refresh(self):
        age = self.age()
        return age is None or age >= self.refresh_after

    def refresh(self):
        return self.mint()


def credential_from_settings(settings, **kwargs):
    if settings.use_iam_auth:
        logger.info(f"Using IAM authentication for RDS: {settings.database_host}:{settings.database_port}")
        return RdsIamCredential(
            host=settings.database_host,
            port=settings.database_port,
            user=settings.database_user,
            region=settings.aws_region,
            ttl_seconds=settings.token_ttl_seconds,
            refresh_margin_seconds=settings.token_refresh_margin_seconds,
            **kwargs
        )
    logger.info("Using password authentication for database")
    return StaticCredential(settings.database_password)
