"""
log_setup.py
~~~~~~~~~~~~

Logging configuration shared by the training command and the API server.
"""

import logging
import os
from typing import Optional

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


def configure_logging(level: Optional[str] = None) -> None:
    """
    Set up logging based on environment.

    Args:
        level: Log level name; defaults to ``LOG_LEVEL`` or INFO

    - In production (``FLASK_ENV=production``): quiet werkzeug request logs
    - In development: keep request logs visible
    """
    log_level_str = (level or os.getenv('LOG_LEVEL', 'INFO')).upper()
    log_level = getattr(logging, log_level_str, logging.INFO)

    logging.basicConfig(level=log_level, format=LOG_FORMAT)
    logging.getLogger('mnistnet').setLevel(log_level)

    if os.getenv('FLASK_ENV') == 'production':
        logging.getLogger('werkzeug').setLevel(logging.WARNING)
    else:
        logging.getLogger('werkzeug').setLevel(logging.INFO)
