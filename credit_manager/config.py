import os
from dotenv import load_dotenv

load_dotenv()


def _env_bool(name: str, default: bool) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


class Config:
    DATABASE_URL = os.environ.get('DATABASE_URL') or 'sqlite:///./credit_manager.db'

    # Auth / JWT
    SECRET_KEY = os.environ.get('SECRET_KEY') or 'change-me-in-production'
    JWT_ALGORITHM = os.environ.get('JWT_ALGORITHM') or 'HS256'
    ACCESS_TOKEN_EXPIRE_MINUTES = int(os.environ.get('ACCESS_TOKEN_EXPIRE_MINUTES', 60 * 24)) # 1 day

    # Login lockout
    MAX_LOGIN_ATTEMPTS = int(os.environ.get('MAX_LOGIN_ATTEMPTS', 5))
    ACCOUNT_LOCK_MINUTES = int(os.environ.get('ACCOUNT_LOCK_MINUTES', 120))

    # Sensitive operation throttling (profile/password changes)
    SENSITIVE_OPERATION_MAX_ATTEMPTS = int(os.environ.get('SENSITIVE_OPERATION_MAX_ATTEMPTS', 5))
    SENSITIVE_OPERATION_WINDOW_SECONDS = int(os.environ.get('SENSITIVE_OPERATION_WINDOW_SECONDS', 15 * 60))

    # Per-IP limit on login and registration
    AUTH_RATE_LIMIT_MAX_ATTEMPTS = int(os.environ.get('AUTH_RATE_LIMIT_MAX_ATTEMPTS', 10))
    AUTH_RATE_LIMIT_WINDOW_SECONDS = int(os.environ.get('AUTH_RATE_LIMIT_WINDOW_SECONDS', 15 * 60))

    # Scoring
    SCORING_MODEL_VERSION = os.environ.get('SCORING_MODEL_VERSION') or '1.0.0'
    SCORING_RANDOMIZED = _env_bool('SCORING_RANDOMIZED', True)
    SCORING_PERTURBATION = float(os.environ.get('SCORING_PERTURBATION', 0.05))
    BATCH_ANALYSIS_LIMIT = int(os.environ.get('BATCH_ANALYSIS_LIMIT', 50))
    BATCH_ANALYSIS_WORKERS = int(os.environ.get('BATCH_ANALYSIS_WORKERS', 4))

    # Document metadata limits
    MAX_DOCUMENTS_PER_UPLOAD = int(os.environ.get('MAX_DOCUMENTS_PER_UPLOAD', 10))
    MAX_DOCUMENT_SIZE_BYTES = int(os.environ.get('MAX_DOCUMENT_SIZE_BYTES', 10 * 1024 * 1024)) # 10MB
    ALLOWED_DOCUMENT_MIME_TYPES = [
        m.strip() for m in (
            os.environ.get('ALLOWED_DOCUMENT_MIME_TYPES')
            or 'application/pdf,image/jpeg,image/png,application/msword,'
               'application/vnd.openxmlformats-officedocument.wordprocessingml.document'
        ).split(',') if m.strip()
    ]

    LOG_LEVEL = os.environ.get('LOG_LEVEL') or 'INFO'
