"""
portal/utils/logging.py
───────────────────────
Configures structured logging for production.
"""
import os
import logging
from logging.handlers import RotatingFileHandler
from flask import has_request_context, request, session


class RequestFormatter(logging.Formatter):
    """
    Custom formatter that injects request info (IP, URL, acting user id)
    into logs if a request context is available.
    """
    def format(self, record):
        if has_request_context():
            record.url = request.url
            record.remote_addr = request.remote_addr
            record.user_id = session.get('user_id')
        else:
            record.url = None
            record.remote_addr = None
            record.user_id = None
        return super().format(record)


def setup_logging(app):
    """
    Configure rotating file logging: logs/app.log
    Max size: 5MB
    Backup count: 5 files
    Format: timestamp | level | module | ip | user | url | message
    """
    # Re-running the factory (tests) replaces our handlers instead of stacking them
    for handler in [h for h in app.logger.handlers if getattr(h, '_portal_handler', False)]:
        app.logger.removeHandler(handler)
        handler.close()

    # 1. File Logger (skipped when the filesystem is read-only)
    try:
        log_dir = app.config.get('LOG_DIR') or os.path.join(app.root_path, '..', 'logs')
        os.makedirs(log_dir, exist_ok=True)

        file_handler = RotatingFileHandler(
            os.path.join(log_dir, 'app.log'),
            maxBytes=5 * 1024 * 1024,
            backupCount=5
        )
        file_handler.setFormatter(RequestFormatter(
            '%(asctime)s | %(levelname)s | %(name)s | %(remote_addr)s | user=%(user_id)s | %(url)s | %(message)s'
        ))
        file_handler.setLevel(logging.INFO)
        file_handler._portal_handler = True
        app.logger.addHandler(file_handler)
    except OSError:
        app.logger.warning("File logging disabled: log directory is not writable")

    # 2. Stdout Logger (picked up by the platform's log collector)
    stream_handler = logging.StreamHandler()
    stream_handler.setFormatter(logging.Formatter(
        '%(asctime)s | %(levelname)s | %(message)s'
    ))
    stream_handler.setLevel(logging.INFO)
    stream_handler._portal_handler = True
    app.logger.addHandler(stream_handler)

    app.logger.setLevel(logging.INFO)
    app.logger.info("Requisition portal startup")
