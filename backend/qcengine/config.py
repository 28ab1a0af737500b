import os
# Robust .env loading: handle different encodings (utf-8, utf-8-sig, utf-16)
from dotenv import load_dotenv, find_dotenv

# Attempt to load a .env file even if it was saved with a BOM or UTF-16
def _safe_load_dotenv():
    """Load a .env file trying multiple encodings so that a file saved with
    Windows Notepad (often UTF-16-LE with BOM) does not crash the app.
    """

    dotenv_path = find_dotenv(usecwd=True)
    if not dotenv_path:
        return

    for enc in ("utf-8", "utf-8-sig", "utf-16", "latin-1"):
        try:
            load_dotenv(dotenv_path, encoding=enc, override=False)
            return  # success
        except UnicodeDecodeError:
            # try next encoding
            continue

    raise UnicodeDecodeError("dotenv", b"", 0, 1, "Unable to decode .env file - please save it in UTF-8.")


# Safely load environment variables on import
try:
    _safe_load_dotenv()
except Exception as e:
    print(f"Warning: Could not load .env file: {e}")
    print("Using default configuration values")


class Config:
    """Base configuration class"""

    # Flask Configuration
    SECRET_KEY = os.environ.get('SECRET_KEY') or 'dev-secret-key-change-in-production'
    DEBUG = os.environ.get('FLASK_DEBUG', 'True').lower() == 'true'

    # CORS Configuration
    CORS_ORIGINS = os.environ.get('CORS_ORIGINS', 'http://localhost:3000').split(',')

    # Sampling plan: None keeps the built-in Ac/Re table
    SAMPLING_PLAN_PATH = os.environ.get('SAMPLING_PLAN_PATH') or None
    DEFAULT_QUALITY_LEVEL = os.environ.get('DEFAULT_QUALITY_LEVEL', '1.0%')

    # Limits for table formulas
    EXPRESSION_MAX_LENGTH = int(os.environ.get('EXPRESSION_MAX_LENGTH', 500))
    EXPRESSION_MAX_NODES = int(os.environ.get('EXPRESSION_MAX_NODES', 200))

    # Logging
    LOG_DIR = os.environ.get('LOG_DIR', 'logs')
    LOG_LEVEL = os.environ.get('LOG_LEVEL', 'INFO').upper()

class DevelopmentConfig(Config):
    """Development configuration"""
    DEBUG = True

class ProductionConfig(Config):
    """Production configuration"""
    DEBUG = False

class TestingConfig(Config):
    """Testing configuration"""
    TESTING = True
    DEBUG = False
    SAMPLING_PLAN_PATH = None

# Configuration dictionary
config = {
    'development': DevelopmentConfig,
    'production': ProductionConfig,
    'testing': TestingConfig,
    'default': DevelopmentConfig
}
