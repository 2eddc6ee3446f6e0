"""
storefront/utils/logging.py
───────────────────────────
Log setup for the back-office.

Every business action (invoice committed, payment recorded, stock
deducted, CSV import) goes through `current_app.logger`, so the two
handlers installed here see all of it:

  * LOG_DIR/app.log   rotating, 5 MB × 5, with the caller's IP, user id
                      and URL on each line
  * stdout            short format for the hosting platform's log viewer
"""
import os
import logging
from logging.handlers import RotatingFileHandler
from flask import has_request_context, request, session


FILE_FORMAT = ('%(asctime)s | %(levelname)s | %(name)s | %(remote_addr)s | '
               'user=%(user_id)s | %(url)s | %(message)s')
STREAM_FORMAT = '%(asctime)s | %(levelname)s | %(message)s'


class RequestFormatter(logging.Formatter):
    """Adds remote_addr, user_id and url to the record; None outside a request."""

    def format(self, record):
        in_request = has_request_context()
        record.url = request.url if in_request else None
        record.remote_addr = request.remote_addr if in_request else None
        record.user_id = session.get('user_id') if in_request else None
        return super().format(record)


def _file_handler(log_dir, level):
    os.makedirs(log_dir, exist_ok=True)
    handler = RotatingFileHandler(
        os.path.join(log_dir, 'app.log'),
        maxBytes=5 * 1024 * 1024,
        backupCount=5,
    )
    handler.setFormatter(RequestFormatter(FILE_FORMAT))
    handler.setLevel(level)
    return handler


def setup_logging(app):
    level = logging.getLevelName(app.config.get('LOG_LEVEL', 'INFO').upper())
    if not isinstance(level, int):
        level = logging.INFO

    stream = logging.StreamHandler()
    stream.setFormatter(logging.Formatter(STREAM_FORMAT))
    stream.setLevel(level)
    app.logger.addHandler(stream)
    app.logger.setLevel(level)

    # Tests log to stdout only
    log_dir = app.config.get('LOG_DIR')
    if log_dir and not app.testing:
        try:
            app.logger.addHandler(_file_handler(log_dir, level))
        except OSError as exc:
            app.logger.warning(f"File logging disabled, {log_dir} is not writable: {exc}")

    app.logger.info("Storefront back-office startup")
