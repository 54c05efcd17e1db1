"""Application settings and validation."""

import os
from pathlib import Path
from typing import Optional

BASE = Path(__file__).resolve().parent.parent


class Settings:
    ENV: str
    JWT_SECRET: str
    JWT_ALGORITHM: str
    JWT_EXPIRE_HOURS: int
    DATABASE_URL: str
    ALLOW_INSECURE_JWT: bool
    ALLOW_DEV_CORS: bool
    JOIN_CODE_TTL_DAYS: int
    DEFAULT_GROUP_SIZE: int
    CACHE_TTL_SECONDS: float
    CACHE_MAX_ENTRIES: Optional[int]
    LOG_LEVEL: str

    def __init__(self):
        self.ENV = os.getenv("ENV", "dev").lower()
        self.JWT_SECRET = os.getenv("JWT_SECRET", "change_me_for_prod")
        self.JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")
        self.JWT_EXPIRE_HOURS = int(os.getenv("JWT_EXPIRE_HOURS", "24"))
        self.DATABASE_URL = os.getenv("DATABASE_URL", f"sqlite:///{BASE / 'coursehub.db'}")
        self.ALLOW_INSECURE_JWT = os.getenv("ALLOW_INSECURE_JWT", "false").lower() == "true"
        self.ALLOW_DEV_CORS = os.getenv("ALLOW_DEV_CORS", "true").lower() == "true"
        self.JOIN_CODE_TTL_DAYS = int(os.getenv("JOIN_CODE_TTL_DAYS", "14"))
        self.DEFAULT_GROUP_SIZE = int(os.getenv("DEFAULT_GROUP_SIZE", "3"))
        self.CACHE_TTL_SECONDS = float(os.getenv("CACHE_TTL_SECONDS", "120"))
        max_entries = os.getenv("CACHE_MAX_ENTRIES", "").strip()
        self.CACHE_MAX_ENTRIES = int(max_entries) if max_entries else None
        self.LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
        self._validate()

    def _validate(self):
        if self.ENV != "dev" and not self.ALLOW_INSECURE_JWT and self.JWT_SECRET == "change_me_for_prod":
            raise RuntimeError("JWT_SECRET must be set to a non-default value in non-dev environments")
        if self.JOIN_CODE_TTL_DAYS < 1:
            raise RuntimeError("JOIN_CODE_TTL_DAYS must be at least 1")
        if self.CACHE_TTL_SECONDS < 0:
            raise RuntimeError("CACHE_TTL_SECONDS must be >= 0")


settings = Settings()
