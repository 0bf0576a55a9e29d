# logger.py - Centralized logging configuration
import os
import logging
from logging.handlers import RotatingFileHandler

LOG_FORMAT = "%(asctime)s %(levelname)s: %(message)s [in %(pathname)s:%(lineno)d]"


def setup_logger(name, log_file=None, level=logging.INFO):
    """Set up a logger with file rotation"""
    log_dir = os.environ.get("LOG_DIR", "logs")
    if not os.path.exists(log_dir):
        os.makedirs(log_dir)

    if not log_file:
        log_file = os.path.join(log_dir, f"{name}.log")

    logger = logging.getLogger(name)

    # Avoid adding handlers multiple times
    if not logger.handlers:
        logger.setLevel(level)

        file_handler = RotatingFileHandler(
            log_file,
            maxBytes=10240,
            backupCount=10
        )
        file_handler.setFormatter(logging.Formatter(LOG_FORMAT))
        file_handler.setLevel(level)
        logger.addHandler(file_handler)

        # Console handler for development
        if os.environ.get("FLASK_ENV") != "production":
            console_handler = logging.StreamHandler()
            console_handler.setLevel(logging.DEBUG)
            console_handler.setFormatter(logging.Formatter(
                "%(name)s - %(levelname)s - %(message)s"
            ))
            logger.addHandler(console_handler)

    return logger


def configure_app_logging(app):
    """Attach the file (and, in debug, console) handler to app.logger."""
    log_dir = app.config.get("LOG_DIR", "logs")
    if not os.path.exists(log_dir):
        os.makedirs(log_dir)

    file_handler = logging.FileHandler(os.path.join(log_dir, "app.log"), mode="a", encoding="utf-8")
    file_handler.setFormatter(logging.Formatter(LOG_FORMAT))
    file_handler.setLevel(logging.INFO)

    app.logger.handlers.clear()
    app.logger.addHandler(file_handler)
    app.logger.setLevel(logging.INFO)
    app.logger.propagate = False

    if app.debug:
        console_handler = logging.StreamHandler()
        console_handler.setLevel(logging.DEBUG)
        app.logger.addHandler(console_handler)


# Wallet mutations and withdrawal transitions
ledger_logger = setup_logger("ledger")
