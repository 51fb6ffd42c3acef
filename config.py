import os

from dotenv import load_dotenv

load_dotenv()


class Config:
    """Base configuration class"""

    SECRET_KEY = os.getenv("SECRET_KEY", "dev-secret-key-change-in-production")
    FLASK_ENV = os.getenv("FLASK_ENV", "development")
    DEBUG = os.getenv("DEBUG", "True") == "True"

    # SQLAlchemy configuration
    SQLALCHEMY_DATABASE_URI = os.getenv("DATABASE_URI", "sqlite:///tracker.db")
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Content generation
    LLM_PROVIDER = os.getenv("LLM_PROVIDER", "mistral")  # openai | mistral
    LLM_MODEL = os.getenv("LLM_MODEL")  # None = provider default
    LLM_TIMEOUT = float(os.getenv("LLM_TIMEOUT", "30"))

    # Seconds a review waits for another review of the same facet
    REVIEW_LOCK_TIMEOUT = float(os.getenv("REVIEW_LOCK_TIMEOUT", "5"))

    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

    ALLOWED_ORIGINS = os.getenv("ALLOWED_ORIGINS", "http://localhost:5173").split(",")


class DevelopmentConfig(Config):
    """Development environment configuration"""

    DEBUG = True
    LOG_LEVEL = os.getenv("LOG_LEVEL", "DEBUG")


class ProductionConfig(Config):
    """Production environment configuration"""

    DEBUG = False

    SQLALCHEMY_ENGINE_OPTIONS = {
        "pool_size": 20,
        "max_overflow": 10,
        "pool_recycle": 3600,
        "pool_pre_ping": True,
    }


class TestingConfig(Config):
    """Testing environment configuration"""

    TESTING = True
    DEBUG = True
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    LLM_PROVIDER = "mistral"
    LLM_MODEL = "test-model"
    REVIEW_LOCK_TIMEOUT = 0.5
    LOG_LEVEL = "DEBUG"


config = {
    "development": DevelopmentConfig,
    "production": ProductionConfig,
    "testing": TestingConfig,
    "default": DevelopmentConfig,
}
