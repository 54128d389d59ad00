# votequeue/config.py

import logging
import os
import socket

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


def _env_bool(environ, name, default='false'):
    return environ.get(name, default).strip().lower() == 'true'


class Settings:
    """
    Runtime configuration shared by the intake, worker and results processes.

    Every attribute has a default suitable for the docker-compose style
    deployment (services named ``redis`` and ``db``). Keyword arguments override
    individual values, which is how tests build isolated configurations.
    """

    def __init__(self, **overrides):
        # Durable queue
        self.redis_host = 'redis'
        self.redis_port = 6379
        self.redis_socket_timeout = 5.0
        self.queue_key = 'votes'

        # Relational store
        self.database_url = None
        self.database_host = 'db'
        self.database_port = 5432
        self.database_user = 'postgres'
        self.database_password = 'postgres'
        self.database_name = 'votes'
        self.use_iam_auth = False
        self.aws_region = 'us-west-2'
        self.token_ttl_seconds = 900
        self.token_refresh_margin_seconds = 300
        self.atomic_upsert = False
        self.database_connect_timeout = 5

        # Worker loop and retries
        self.poll_interval = 0.1
        self.retry_backoff_seconds = 1.0
        self.retry_max_backoff_seconds = 1.0
        self.retry_jitter_seconds = 0.0

        # Intake
        self.option_a = 'Cats'
        self.option_b = 'Dogs'
        self.hostname = socket.gethostname()
        self.secret_key = 'change-me-in-production'
        self.vote_rate_limit = '60/minute'
        self.ratelimit_storage_uri = 'memory://'
        self.fault_injection = False
        self.intake_host = '0.0.0.0'
        self.intake_port = 8080

        # Results
        self.results_host = '0.0.0.0'
        self.results_port = 4000
        self.results_interval = 1.0

        self.log_level = 'INFO'

        for key, value in overrides.items():
            if not hasattr(self, key):
                raise ValueError(f"Unknown setting: {key}")
            setattr(self, key, value)

    @classmethod
    def from_env(cls, environ=None):
        env = os.environ if environ is None else environ
        settings = cls()

        settings.redis_host = env.get('REDIS_HOST', settings.redis_host)
        settings.redis_port = int(env.get('REDIS_PORT', settings.redis_port))
        settings.redis_socket_timeout = float(env.get('REDIS_SOCKET_TIMEOUT', settings.redis_socket_timeout))
        settings.queue_key = env.get('QUEUE_KEY', settings.queue_key)

        settings.database_url = env.get('DATABASE_URL') or None
        settings.database_host = env.get('DATABASE_HOST', settings.database_host)
        settings.database_port = int(env.get('DATABASE_PORT', settings.database_port))
        settings.database_user = env.get('DATABASE_USER', settings.database_user)
        settings.database_password = env.get('DATABASE_PASSWORD', settings.database_password)
        settings.database_name = env.get('DATABASE_NAME', settings.database_name)
        settings.use_iam_auth = _env_bool(env, 'DATABASE_USE_IAM_AUTH')
        settings.aws_region = env.get('AWS_REGION', settings.aws_region)
        settings.token_ttl_seconds = int(env.get('DATABASE_TOKEN_TTL_SECONDS', settings.token_ttl_seconds))
        settings.token_refresh_margin_seconds = int(
            env.get('DATABASE_TOKEN_REFRESH_MARGIN_SECONDS', settings.token_refresh_margin_seconds)
        )
        settings.atomic_upsert = _env_bool(env, 'DATABASE_ATOMIC_UPSERT')
        settings.database_connect_timeout = int(
            env.get('DATABASE_CONNECT_TIMEOUT', settings.database_connect_timeout)
        )

        settings.poll_interval = float(env.get('WORKER_POLL_INTERVAL', settings.poll_interval))
        settings.retry_backoff_seconds = float(env.get('RETRY_BACKOFF_SECONDS', settings.retry_backoff_seconds))
        settings.retry_max_backoff_seconds = float(
            env.get('RETRY_MAX_BACKOFF_SECONDS', settings.retry_max_backoff_seconds)
        )
        settings.retry_jitter_seconds = float(env.get('RETRY_JITTER_SECONDS', settings.retry_jitter_seconds))

        settings.option_a = env.get('OPTION_A', settings.option_a)
        settings.option_b = env.get('OPTION_B', settings.option_b)
        settings.secret_key = env.get('SECRET_KEY', settings.secret_key)
        settings.vote_rate_limit = env.get('VOTE_RATE_LIMIT', settings.vote_rate_limit)
        settings.ratelimit_storage_uri = env.get('RATELIMIT_STORAGE_URI', settings.ratelimit_storage_uri)
        settings.fault_injection = _env_bool(env, 'FAULT_INJECTION')
        settings.intake_host = env.get('INTAKE_HOST', settings.intake_host)
        settings.intake_port = int(env.get('INTAKE_PORT', settings.intake_port))

        settings.results_host = env.get('RESULTS_HOST', settings.results_host)
        settings.results_port = int(env.get('RESULTS_PORT', settings.results_port))
        settings.results_interval = float(env.get('RESULTS_INTERVAL', settings.results_interval))

        settings.log_level = env.get('LOG_LEVEL', settings.log_level)
        return settings

    @property
    def choices(self):
        """Choice value -> display label."""
        return {'a': self.option_a, 'b': self.option_b}


def configure_logging(level='INFO'):
    logging.basicConfig(
        level=getattr(logging, str(level).upper(), logging.INFO),
        format=LOG_FORMAT,
    )
