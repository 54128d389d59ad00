# votequeue/intake/__init__.py

from flask import Flask
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from werkzeug.middleware.proxy_fix import ProxyFix

from votequeue.config import Settings
from votequeue.intake.service import IntakeService
from votequeue.messaging.vote_queue import VoteQueue


def create_app(settings=None, vote_queue=None):
    """
    Build the intake application.

    Each app gets its own IntakeService, so apps created with different
    settings (fault injection on/off, other options) do not share state.
    """
    settings = settings or Settings.from_env()

    app = Flask(__name__)
    app.config['SECRET_KEY'] = settings.secret_key
    app.config['RATELIMIT_STORAGE_URI'] = settings.ratelimit_storage_uri
    app.config['VOTE_RATE_LIMIT'] = settings.vote_rate_limit
    app.config['HOSTNAME'] = settings.hostname

    # Fix proxy headers so rate limiting sees the client address
    app.wsgi_app = ProxyFix(app.wsgi_app, x_for=1, x_proto=1, x_host=1, x_port=1)

    vote_queue = vote_queue or VoteQueue.from_settings(settings)
    app.extensions['vote_intake'] = IntakeService(
        vote_queue,
        settings.choices,
        fault_injection=settings.fault_injection,
    )

    # One limiter per app, so apps never share counters or storage
    limiter = Limiter(key_func=get_remote_address, app=app, default_limits=[])
    app.extensions['vote_limiter'] = limiter

    from votequeue.intake.routes import bp as intake_bp, limit_votes
    from votequeue.operations.health_monitor import bp as health_bp
    app.register_blueprint(intake_bp)
    app.register_blueprint(health_bp)
    limit_votes(app, limiter)
    return app
