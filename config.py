"""
Portfolio CMS Configuration
Supports AWS Parameter Store for production secrets
"""
import logging
import os
from functools import lru_cache

import boto3
from botocore.exceptions import BotoCoreError, ClientError

logger = logging.getLogger(__name__)


class ConfigurationError(RuntimeError):
    """Raised at startup when required settings are missing."""


def get_parameter(name: str, default: str = "") -> str:
    """Get parameter from AWS Parameter Store or environment"""
    # Environment variable takes precedence
    env_key = name.upper().replace("-", "_").replace("/", "_")
    if env_key in os.environ:
        return os.environ[env_key]

    # Try AWS Parameter Store in production
    if os.environ.get("USE_PARAMETER_STORE"):
        try:
            ssm = boto3.client("ssm", region_name=os.environ.get("AWS_REGION", "us-west-2"))
            path = os.environ.get("PARAMETER_STORE_PATH", "/portfolio-cms/prod/")
            response = ssm.get_parameter(Name=f"{path}{name}", WithDecryption=True)
            return response["Parameter"]["Value"]
        except (BotoCoreError, ClientError) as e:
            logger.warning("Parameter Store lookup for %s failed: %s", name, e)

    return default


def _int_env(name: str, default: int) -> int:
    raw = os.environ.get(name, "").strip()
    return int(raw) if raw.isdigit() else default


class Config:
    """Base configuration"""
    # Flask
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-change-in-production")

    # Database
    SQLALCHEMY_DATABASE_URI = os.environ.get("DATABASE_URL", "sqlite:///portfolio.db")
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ENGINE_OPTIONS = {"pool_pre_ping": True}

    # Fix Render's postgres:// URL
    if SQLALCHEMY_DATABASE_URI.startswith("postgres://"):
        SQLALCHEMY_DATABASE_URI = SQLALCHEMY_DATABASE_URI.replace("postgres://", "postgresql://", 1)

    # Session
    SESSION_PERMANENT = False
    PERMANENT_SESSION_LIFETIME = 86400

    # Object storage
    STORAGE_BACKEND = os.environ.get("STORAGE_BACKEND", "s3")
    AWS_REGION = os.environ.get("AWS_REGION", "")
    AWS_S3_BUCKET = os.environ.get("AWS_S3_BUCKET", "")
    ASSET_FOLDER_PREFIX = os.environ.get("ASSET_FOLDER_PREFIX", "portfolio-cms")
    ASSET_PUBLIC_BASE_URL = os.environ.get("ASSET_PUBLIC_BASE_URL", "")
    STORAGE_TIMEOUT_SECONDS = _int_env("STORAGE_TIMEOUT_SECONDS", 20)
    UPLOAD_CONCURRENCY = _int_env("UPLOAD_CONCURRENCY", 4)

    # Uploads
    STAGING_DIR = os.environ.get("STAGING_DIR", "/tmp/portfolio_staging")
    MAX_PDF_BYTES = 10 * 1024 * 1024  # 10MB
    MAX_IMAGE_BYTES = 5 * 1024 * 1024  # 5MB per file
    MAX_IMAGES_PER_BATCH = 10
    # Whole request body: a full image batch plus form fields
    MAX_CONTENT_LENGTH = MAX_IMAGES_PER_BATCH * MAX_IMAGE_BYTES + 1024 * 1024
    STAGING_MAX_AGE_SECONDS = _int_env("STAGING_MAX_AGE_SECONDS", 3600)

    # Resume rendering
    RENDER_TIMEOUT_SECONDS = _int_env("RENDER_TIMEOUT_SECONDS", 30)
    RENDER_DPI = _int_env("RENDER_DPI", 150)
    RENDER_JPEG_QUALITY = _int_env("RENDER_JPEG_QUALITY", 90)

    # App Version
    APP_VERSION = os.environ.get("APP_VERSION", "2026.10")
    BUILD_TIME = os.environ.get("BUILD_TIME", "")
    GIT_COMMIT = os.environ.get("GIT_COMMIT", "")

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")


class DevelopmentConfig(Config):
    """Development configuration"""
    DEBUG = True
    TESTING = False


class ProductionConfig(Config):
    """Production configuration"""
    DEBUG = False
    TESTING = False

    # Override with Parameter Store in production
    SECRET_KEY = get_parameter("secret-key", Config.SECRET_KEY)
    AWS_S3_BUCKET = get_parameter("aws-s3-bucket", Config.AWS_S3_BUCKET)
    ASSET_PUBLIC_BASE_URL = get_parameter("asset-public-base-url", Config.ASSET_PUBLIC_BASE_URL)


class TestingConfig(Config):
    """Testing configuration"""
    DEBUG = True
    TESTING = True
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    SQLALCHEMY_ENGINE_OPTIONS = {}
    STORAGE_BACKEND = "memory"
    RENDER_DPI = 50
    LOG_LEVEL = "DEBUG"


config = {
    "development": DevelopmentConfig,
    "production": ProductionConfig,
    "testing": TestingConfig,
    "default": DevelopmentConfig,
}


@lru_cache()
def get_config(env: str = None):
    """Get configuration by environment name"""
    env = env or os.environ.get("FLASK_ENV", "development")
    return config.get(env, DevelopmentConfig)


def validate_storage_config(settings) -> None:
    """
    Refuse to start without object storage settings.

    A missing bucket or credential would otherwise surface as a 500 on
    the first upload request.
    """
    backend = (settings.get("STORAGE_BACKEND") or "").strip().lower()
    if backend == "memory":
        return
    if backend != "s3":
        raise ConfigurationError(f"Unknown STORAGE_BACKEND: {backend!r}")

    missing = [
        key for key in ("AWS_S3_BUCKET", "AWS_REGION", "ASSET_FOLDER_PREFIX")
        if not (settings.get(key) or "").strip()
    ]
    if missing:
        raise ConfigurationError(f"Object storage not configured, missing: {', '.join(missing)}")

    session = boto3.session.Session(region_name=settings["AWS_REGION"])
    if session.get_credentials() is None:
        raise ConfigurationError("Object storage not configured, no AWS credentials found")
