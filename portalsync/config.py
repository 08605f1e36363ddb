"""
Process-wide defaults.

Importing this module loads `.env` from the project root and then from the
working directory, so PORTALSYNC_* overrides reach the settings loader.
"""

import logging
from pathlib import Path

import dotenv

ROOT = Path(__file__).parent.parent

dotenv.load_dotenv(ROOT / '.env')
dotenv.load_dotenv(Path.cwd() / '.env')


def get_logger(name: str) -> logging.Logger:
    """Module logger; level and output come from the `portalsync` logger's handlers."""
    return logging.getLogger(name)


DEFAULT_CONTENT_LANGUAGE = 'de'
DEFAULT_STORE_ROOT = './store'

# Mime prefix that accepts any content type
ANY_MIME_TYPE = '*'

HTTP_GET = 'GET'
HTTP_POST = 'POST'
