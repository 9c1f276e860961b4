import os
from pathlib import Path


BASE_DIR = Path(__file__).resolve().parent.parent


class Config:
    SECRET_KEY = os.environ.get("SECRET_KEY", "default-secret-key")
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", f"sqlite:///{BASE_DIR / 'marksync.db'}"
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    CHANGE_FEED_PAGE_SIZE = int(os.environ.get("CHANGE_FEED_PAGE_SIZE", "200"))


class TestConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"


class ClientConfig:
    BASE_URL = os.environ.get("MARKSYNC_URL", "")
    API_TOKEN = os.environ.get("MARKSYNC_TOKEN", "")
    REQUEST_TIMEOUT = float(os.environ.get("MARKSYNC_REQUEST_TIMEOUT", "10"))
    CHANGE_POLL_INTERVAL = float(os.environ.get("MARKSYNC_POLL_INTERVAL", "2"))
    CLEAR_ON_SIGN_OUT = os.environ.get("MARKSYNC_CLEAR_ON_SIGN_OUT", "0") == "1"
    DISCARD_STALE_RECONCILES = (
        os.environ.get("MARKSYNC_DISCARD_STALE_RECONCILES", "1") == "1"
    )
