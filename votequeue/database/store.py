# votequeue/database/store.py

"""
Persistent store for tally rows.

TallyStore owns a single SQLAlchemy connection to the relational endpoint,
the `votes` table, and the credential used to authenticate. Connection-level
failures close the store and surface as StoreUnavailable so callers can decide
whether to reopen.
"""

import logging
import time

from sqlalchemy import create_engine, func, insert, select, text, update
from sqlalchemy.engine import URL, make_url
from sqlalchemy.exc import DBAPIError, IntegrityError, InterfaceError, OperationalError, SQLAlchemyError

from votequeue.database.models import Base, TallyRow
from votequeue.errors import CredentialError, StoreUnavailable
from votequeue.operations.retry import RetryPolicy

logger = logging.getLogger(__name__)

CONNECTION_ERRORS = (OperationalError, InterfaceError)


def database_url_from_settings(settings):
    if settings.database_url:
        return make_url(settings.database_url)
    query = {'sslmode': 'require'} if settings.use_iam_auth else {}
    return URL.create(
        'postgresql+psycopg2',
        username=settings.database_user,
        host=settings.database_host,
        port=settings.database_port,
        database=settings.database_name,
        query=query,
    )


class TallyStore:
    def __init__(self, url, credential=None, retry_policy=None, atomic_upsert=False,
                 engine_factory=create_engine, connect_timeout=None, clock=time.monotonic):
        self.url = make_url(url)
        self.credential = credential
        self.retry_policy = retry_policy or RetryPolicy()
        self.atomic_upsert = atomic_upsert
        self.engine_factory = engine_factory
        self.connect_timeout = connect_timeout
        self.clock = clock
        self._engine = None
        self._connection = None
        self._refresh_failures = 0
        self._refresh_retry_at = None

    @classmethod
    def from_settings(cls, settings, credential=None, retry_policy=None, **kwargs):
        return cls(
            database_url_from_settings(settings),
            credential=credential,
            retry_policy=retry_policy or RetryPolicy.from_settings(settings),
            atomic_upsert=settings.atomic_upsert,
            connect_timeout=settings.database_connect_timeout,
            **kwargs
        )

    @property
    def is_open(self):
        connection = self._connection
        return connection is not None and not connection.closed and not connection.invalidated

    @property
    def dialect(self):
        return self._engine.dialect.name if self._engine is not None else self.url.get_backend_name()

    def _connection_url(self):
        # SQLite URLs reject credentials
        if self.credential is None or self.url.get_backend_name() == 'sqlite':
            return self.url
        password = self.credential.password()
        if password is None:
            return self.url
        return self.url.set(password=password)

    def _engine_options(self):
        # psycopg2 only; bounds the TCP connect to an unresponsive endpoint
        if self.connect_timeout and self.url.get_backend_name() == 'postgresql':
            return {'connect_args': {'connect_timeout': int(self.connect_timeout)}}
        return {}

    # ------------------------------------------------------------------ #
    # Connection lifecycle
    # ------------------------------------------------------------------ #

    def _open_once(self):
        self.close()
        engine = None
        try:
            engine = self.engine_factory(self._connection_url(), **self._engine_options())
            connection = engine.connect()
            Base.metadata.create_all(connection)
            connection.commit()
        except (SQLAlchemyError, CredentialError, OSError) as e:
            if engine is not None:
                engine.dispose()
            raise StoreUnavailable(f"Could not open store at {self.url.render_as_string()}: {e}") from e
        self._engine = engine
        self._connection = connection
        logger.info("Connected to db")

    def open(self):
        """Block until the endpoint accepts a connection and the table exists."""
        self.retry_policy.call(self._open_once, retry_on=(StoreUnavailable,), description='db')

    def try_open(self):
        """Single connection attempt. Returns True when the store is open."""
        try:
            self._open_once()
        except StoreUnavailable as e:
            logger.error(f"Waiting for db: {e}")
            return False
        return True

    def close(self):
        if self._connection is not None:
            try:
                self._connection.close()
            except SQLAlchemyError as e:
                logger.debug(f"Error closing db connection: {e}")
        if self._engine is not None:
            self._engine.dispose()
        self._connection = None
        self._engine = None

    def refresh_credentials(self):
        """
        Mint a new credential, then reconnect with it.

        Returns True when the store is open again. If minting fails the current
        connection is kept and the next attempt waits for the retry policy's
        backoff. A failed reconnect leaves the store closed; the next write
        attempt reopens it.
        """
        logger.info("Refreshing database credential...")
        if self.credential is not None:
            try:
                self.credential.refresh()
            except CredentialError as e:
                self._refresh_failures += 1
                delay = self.retry_policy.delay_for(self._refresh_failures)
                self._refresh_retry_at = self.clock() + delay
                logger.error(f"Credential refresh failed, keeping current connection, retrying in {delay}s: {e}")
                return False
        self._refresh_failures = 0
        self._refresh_retry_at = None
        self.close()
        return self.try_open()

    def needs_credential_refresh(self):
        if self.credential is None or not self.credential.needs_refresh():
            return False
        return self._refresh_retry_at is None or self.clock() >= self._refresh_retry_at

    # ------------------------------------------------------------------ #
    # Operations
    # ------------------------------------------------------------------ #

    def _run(self, operation):
        if not self.is_open:
            raise StoreUnavailable("Store connection is not open")
        try:
            return operation(self._connection)
        except CONNECTION_ERRORS as e:
            self.close()
            raise StoreUnavailable(f"Lost connection to db: {e}") from e
        except DBAPIError as e:
            if e.connection_invalidated:
                self.close()
                raise StoreUnavailable(f"Lost connection to db: {e}") from e
            raise

    def upsert(self, voter_id, choice):
        """
        Record `choice` for `voter_id`, overriding any earlier choice.

        Returns 'inserted', 'updated' or, with atomic_upsert, 'upserted'.
        """
        if self.atomic_upsert and self.dialect in ('postgresql', 'sqlite'):
            return self._run(lambda conn: self._upsert_on_conflict(conn, voter_id, choice))
        return self._run(lambda conn: self._insert_then_update(conn, voter_id, choice))

    @staticmethod
    def _insert_then_update(conn, voter_id, choice):
        # Not atomic: two concurrent writers for one voter can race between the statements
        try:
            with conn.begin():
                conn.execute(insert(TallyRow).values(id=voter_id, vote=choice))
            return 'inserted'
        except IntegrityError:
            with conn.begin():
                conn.execute(update(TallyRow).where(TallyRow.id == voter_id).values(vote=choice))
            return 'updated'

    @staticmethod
    def _upsert_on_conflict(conn, voter_id, choice):
        if conn.dialect.name == 'postgresql':
            from sqlalchemy.dialects.postgresql import insert as dialect_insert
        else:
            from sqlalchemy.dialects.sqlite import insert as dialect_insert
        stmt = dialect_insert(TallyRow).values(id=voter_id, vote=choice)
        stmt = stmt.on_conflict_do_update(index_elements=[TallyRow.id], set_={'vote': stmt.excluded.vote})
        with conn.begin():
            conn.execute(stmt)
        return 'upserted'

    def keep_alive(self):
        def probe(conn):
            with conn.begin():
                conn.execute(text('SELECT 1'))
        self._run(probe)

    def count_by_choice(self):
        def query(conn):
            stmt = select(TallyRow.vote, func.count(TallyRow.id)).group_by(TallyRow.vote)
            with conn.begin():
                return {vote: int(count) for vote, count in conn.execute(stmt)}
        return self._run(query)

    def get_choice(self, voter_id):
        def query(conn):
            with conn.begin():
                return conn.execute(select(TallyRow.vote).where(TallyRow.id == voter_id)).scalar_one_or_none()
        return self._run(query)

    def row_count(self):
        def query(conn):
            with conn.begin():
                return conn.execute(select(func.count()).select_from(TallyRow)).scalar_one()
        return self._run(query)
