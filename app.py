# app.py

import os

from flask import Flask

from config import configure_logging, load_config
from database.init_db import init_db
from db import close_db
from routes.api_routes import api_bp
import routes.scan_routes  # noqa: F401  (registers the scan endpoints on api_bp)


def create_app(overrides=None):
    """
    Local JSON service used by the desktop shell.

    Settings come from config.load_config() (environment) and can be
    overridden per instance, e.g. by tests.
    """
    app = Flask(__name__)

    app.config.update(load_config())
    if overrides:
        app.config.update(overrides)

    configure_logging(app.config["LOG_LEVEL"])

    app.config["MAX_CONTENT_LENGTH"] = app.config["MAX_UPLOAD_MB"] * 1024 * 1024
    os.makedirs(app.config["UPLOAD_FOLDER"], exist_ok=True)

    init_db(app.config["DB_PATH"])
    app.teardown_appcontext(close_db)

    app.register_blueprint(api_bp)

    return app


if __name__ == "__main__":
    app = create_app()
    app.run(host="127.0.0.1", port=int(os.getenv("MAIWARE_PORT", "5000")))
