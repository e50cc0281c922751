# backend/erpcore/config.py
from __future__ import annotations
import os


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/erpcore.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///erpcore.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # PAC (certification provider). "sandbox" stamps in-process, "facturama" calls the HTTP API.
    PAC_BACKEND = os.environ.get("PAC_BACKEND", "sandbox")
    PAC_SANDBOX_URL = os.environ.get("PAC_SANDBOX_URL", "https://apisandbox.facturama.mx")
    PAC_PRODUCTION_URL = os.environ.get("PAC_PRODUCTION_URL", "https://api.facturama.mx")
    PAC_SANDBOX_USERNAME = os.environ.get("PAC_SANDBOX_USERNAME")
    PAC_SANDBOX_PASSWORD = os.environ.get("PAC_SANDBOX_PASSWORD")
    PAC_PROD_USERNAME = os.environ.get("PAC_PROD_USERNAME")
    PAC_PROD_PASSWORD = os.environ.get("PAC_PROD_PASSWORD")
    PAC_TIMEOUT_SECONDS = float(os.environ.get("PAC_TIMEOUT_SECONDS", "30"))
    # A claim older than this is considered abandoned and may be taken over.
    PAC_CLAIM_TTL_SECONDS = int(os.environ.get("PAC_CLAIM_TTL_SECONDS", "120"))

    # Sanity thresholds for fiscal validation warnings (cents)
    FISCAL_MIN_TOTAL_CENTS = int(os.environ.get("FISCAL_MIN_TOTAL_CENTS", "100"))
    FISCAL_MAX_TOTAL_CENTS = int(os.environ.get("FISCAL_MAX_TOTAL_CENTS", "100000000"))

    DEFAULT_IVA_RATE_BPS = int(os.environ.get("DEFAULT_IVA_RATE_BPS", "1600"))

    TRANSACTION_RETRY_ATTEMPTS = int(os.environ.get("TRANSACTION_RETRY_ATTEMPTS", "3"))


class TestConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    PAC_BACKEND = "sandbox"
    TRANSACTION_RETRY_ATTEMPTS = 2
