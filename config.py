"""Configuration module for Flask application."""
import os
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()


class Config:
    """Base configuration class."""

    # Flask
    SECRET_KEY = os.getenv('SECRET_KEY', 'dev-secret-key-change-in-production')
    DEBUG = os.getenv('FLASK_DEBUG', '1') == '1'
    ENV = os.getenv('FLASK_ENV', 'development')
    TESTING = False
    JSON_SORT_KEYS = False

    # Database - Support multiple environment variable naming conventions
    # Priority: DATABASE_URL > DB_* > POSTGRES_*
    DATABASE_URL = os.getenv('DATABASE_URL')

    if not DATABASE_URL:
        # Try DB_* variables (Docker style)
        DB_HOST = os.getenv('DB_HOST') or os.getenv('POSTGRES_HOST', 'localhost')
        DB_PORT = os.getenv('DB_PORT') or os.getenv('POSTGRES_PORT', '5432')
        DB_NAME = os.getenv('DB_NAME') or os.getenv('POSTGRES_DB', 'presu')
        DB_USER = os.getenv('DB_USER') or os.getenv('POSTGRES_USER', 'presu')
        DB_PASSWORD = os.getenv('DB_PASSWORD') or os.getenv('POSTGRES_PASSWORD', 'presu')

        DATABASE_URL = (
            f"postgresql://{DB_USER}:{DB_PASSWORD}"
            f"@{DB_HOST}:{DB_PORT}/{DB_NAME}"
        )

    # SQLAlchemy
    SQLALCHEMY_DATABASE_URI = DATABASE_URL
    SQLALCHEMY_ECHO = os.getenv('SQLALCHEMY_ECHO', 'false').lower() == 'true'

    # Pricing (márgenes de materiales)
    MARGEN_GENERAL_DEFAULT = float(os.getenv('MARGEN_GENERAL_DEFAULT', '30'))

    # Presupuestos
    IVA_PORCENTAJE_DEFAULT = float(os.getenv('IVA_PORCENTAJE_DEFAULT', '21'))
    PRESUPUESTO_VALIDEZ_DIAS = int(os.getenv('PRESUPUESTO_VALIDEZ_DIAS', '30'))

    # Expiry sweep (job de expiración automática)
    EXPIRY_JOB_ENABLED = os.getenv('EXPIRY_JOB_ENABLED', 'true').lower() == 'true'
    PRESUPUESTOS_EXPIRY_INTERVAL_MINUTES = os.getenv('PRESUPUESTOS_EXPIRY_INTERVAL_MINUTES', '15')

    # Offer document
    OFERTA_TEMPLATE_DEFAULT_CODE = os.getenv('OFERTA_TEMPLATE_DEFAULT_CODE', 'OFERTA_EMT_360_V2')
    OFERTA_PDF_PROVIDER = os.getenv('OFERTA_PDF_PROVIDER', 'none').lower()  # none, http, reportlab
    OFERTA_PDF_RENDERER_URL = os.getenv('OFERTA_PDF_RENDERER_URL', '')
    OFERTA_PDF_TIMEOUT = int(os.getenv('OFERTA_PDF_TIMEOUT', '30'))  # seconds

    # Business Information (for offers)
    BUSINESS_NAME = os.getenv('BUSINESS_NAME', 'EMT 360')

    # Error tracking
    SENTRY_DSN = os.getenv('SENTRY_DSN')


class TestConfig(Config):
    """Configuration used by the test suite (in-memory SQLite)."""

    TESTING = True
    DEBUG = False
    ENV = 'testing'
    SQLALCHEMY_DATABASE_URI = 'sqlite://'
    SQLALCHEMY_ECHO = False
    EXPIRY_JOB_ENABLED = False
    OFERTA_PDF_PROVIDER = 'none'
