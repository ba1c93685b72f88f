# backend/config.py
import os


def _env_flag(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


class Config:
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-please-change")

    DB_USER = os.environ.get("DB_USER", "studyuser")
    DB_PASS = os.environ.get("DB_PASS", "study_pass")
    DB_HOST = os.environ.get("DB_HOST", "localhost")
    DB_PORT = os.environ.get("DB_PORT", "3306")
    DB_NAME = os.environ.get("DB_NAME", "studyplanner")

    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL",
        f"mysql+pymysql://{DB_USER}:{DB_PASS}@{DB_HOST}:{DB_PORT}/{DB_NAME}"
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # background thread per user; off means regenerate inline in the request
    REGENERATION_ASYNC = _env_flag("REGENERATION_ASYNC", True)
    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")
