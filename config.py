"""
DataLens configuration
All settings come from environment variables, optionally loaded from a .env file
"""

import logging
import os
import secrets

from dotenv import load_dotenv

logger = logging.getLogger(__name__)

# Load .env from the project directory first, then the working directory
_env_path = os.path.join(os.path.dirname(os.path.abspath(__file__)), '.env')
if os.path.exists(_env_path):
    load_dotenv(_env_path)
else:
    load_dotenv()

FLASK_ENV = os.environ.get('FLASK_ENV', 'development')
IS_PRODUCTION = FLASK_ENV == 'production'
SECRET_KEY = os.environ.get('SECRET_KEY') or secrets.token_hex(32)
LOG_LEVEL = os.environ.get('LOG_LEVEL', 'INFO').upper()

# Remote user-management API
USERS_API_URL = os.environ.get('USERS_API_URL', 'http://localhost:8000').rstrip('/')
API_TIMEOUT_SECONDS = float(os.environ.get('API_TIMEOUT_SECONDS', '15'))

# Firestore document store
FIREBASE_CONFIG = os.environ.get('FIREBASE_CONFIG')
CSV_COLLECTION = os.environ.get('CSV_COLLECTION', 'csv_data')

# Local CSV files (threads.csv / nonthreads.csv)
DATA_DIR = os.environ.get('DATA_DIR', os.path.join(os.getcwd(), 'data'))

MAX_UPLOAD_SIZE_MB = int(os.environ.get('MAX_UPLOAD_SIZE_MB', '50'))
ROWS_PER_PAGE = int(os.environ.get('ROWS_PER_PAGE', '50'))

# Highlighting: 'score' uses the AnomalyScore threshold, 'ai' asks the hosted model
HIGHLIGHT_MODE = os.environ.get('HIGHLIGHT_MODE', 'score').lower()
ANTHROPIC_API_KEY = os.environ.get('ANTHROPIC_API_KEY')
HIGHLIGHT_MODEL = os.environ.get('HIGHLIGHT_MODEL', 'claude-3-5-haiku-latest')

# Idle dashboards are dropped after this long
VIEW_TTL_SECONDS = int(os.environ.get('VIEW_TTL_SECONDS', str(2 * 3600)))
VIEW_CLEANUP_INTERVAL = 300


def validate_production_config() -> bool:
    """Validate that all required config is set for production"""
    if not IS_PRODUCTION:
        return True

    errors = []
    if not os.environ.get('SECRET_KEY'):
        errors.append("SECRET_KEY must be set in production")
    if not os.environ.get('USERS_API_URL'):
        errors.append("USERS_API_URL must be set in production")
    if HIGHLIGHT_MODE not in ('score', 'ai'):
        errors.append(f"HIGHLIGHT_MODE must be 'score' or 'ai', got {HIGHLIGHT_MODE!r}")
    if HIGHLIGHT_MODE == 'ai' and not ANTHROPIC_API_KEY:
        errors.append("ANTHROPIC_API_KEY must be set when HIGHLIGHT_MODE=ai")

    if errors:
        logger.error("Production configuration errors:")
        for error in errors:
            logger.error(f"  - {error}")
        return False

    logger.info("✅ Production configuration validated")
    return True
