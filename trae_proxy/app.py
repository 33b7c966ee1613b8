"""The app module, containing the app factory function."""

import atexit
import logging

from flask import Flask
from rich.logging import RichHandler
from rich.traceback import install as install_rich_traceback

from .blueprint import blueprint, init_services
from .common.logging import console


def create_app(config_object="trae_proxy.settings"):
    """Create application factory, as explained here: http://flask.pocoo.org/docs/patterns/appfactories/.

    :param config_object: The configuration object to use.
    """
    app = Flask(__name__.split(".")[0])
    app.config.from_object(config_object)
    configure_logging(app)
    configure_services(app)
    register_blueprints(app)
    return app


def configure_services(app):
    """Initialize the upstream services and start the token refresher."""
    services = init_services(app.config)
    app.extensions["trae_proxy"] = services
    if services.refresher is not None:
        services.refresher.start()
        atexit.register(services.refresher.shutdown)


def register_blueprints(app):
    """Register Flask blueprints."""
    app.register_blueprint(blueprint)
    return None


def configure_logging(app):
    """Configure logging."""
    install_rich_traceback()
    # app.logger is the "trae_proxy" logger, parent of every module logger
    if not any(isinstance(h, RichHandler) for h in app.logger.handlers):
        app.logger.addHandler(RichHandler(console=console, rich_tracebacks=True))
    app.logger.setLevel(app.config.get("LOG_LEVEL", logging.INFO))


def main():
    """Run the development server (``trae-proxy`` console script)."""
    app = create_app()
    app.run(host=app.config["HOST"], port=app.config["PORT"], threaded=True)
