import logging
import os

from flask import Flask

from shared.pubsub import EventPublisher

from .config import config
from .lifecycle import TournamentLifecycle
from .models import db
from .sql_repository import SqlRepository


def configure_logging(level: str):
    logging.basicConfig(
        level=getattr(logging, str(level).upper(), logging.INFO),
        format='%(asctime)s %(levelname)s %(name)s: %(message)s'
    )


def create_app(config_name: str = None) -> Flask:
    """Application factory wiring the engine to its collaborators."""
    if config_name is None:
        config_name = os.getenv('FLASK_ENV', 'development')

    app = Flask(__name__)
    app.config.from_object(config.get(config_name, config['default']))
    configure_logging(app.config['LOG_LEVEL'])

    # Initialize extensions
    db.init_app(app)

    # Create tables
    with app.app_context():
        db.create_all()

    publisher = EventPublisher.from_url(
        app.config.get('REDIS_URL'),
        log_size=app.config.get('EVENT_LOG_SIZE', 1000)
    )

    # Store services on app for access by callers
    app.publisher = publisher
    app.lifecycle = TournamentLifecycle(
        SqlRepository(),
        publisher=publisher,
        swiss_default_rounds=app.config.get('SWISS_DEFAULT_ROUNDS', 0)
    )

    return app
