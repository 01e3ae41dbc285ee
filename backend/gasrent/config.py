# backend/gasrent/config.py
from __future__ import annotations
import os


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/gasrent.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///gasrent.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Late return penalty, in minor currency units per started day
    LATE_FEE_PER_DAY_CENTS = int(os.environ.get("GASRENT_LATE_FEE_PER_DAY_CENTS", "5000"))

    # Display only; all arithmetic is done in cents
    CURRENCY_CODE = os.environ.get("GASRENT_CURRENCY", "NGN")


class TestConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    LATE_FEE_PER_DAY_CENTS = 5000
