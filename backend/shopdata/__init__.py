# backend/shopdata/__init__.py
import atexit

from flask import Flask, current_app

from .config import Config
from .extensions import db, migrate

EXTENSION_KEY = "shopdata"


def create_app(config_object=None) -> Flask:
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(config_object or Config)

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)

    # Import models so Alembic can discover metadata reliably
    from . import models  # noqa: F401

    from .services.data_store import DataStore
    from .services.snapshot_backends import build_backend

    store = DataStore.from_config(app.config, build_backend(app))
    store.load()
    app.extensions[EXTENSION_KEY] = store

    # Final write on interpreter exit; a no-op when nothing is dirty
    atexit.register(store.shutdown)

    # Register CLI commands
    from .cli import register_commands
    register_commands(app)

    return app


def get_store():
    """The DataStore bound to the current application."""
    return current_app.extensions[EXTENSION_KEY]
