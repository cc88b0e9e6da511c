# grocery_service/config.py
import os

from dotenv import load_dotenv

load_dotenv()


def get_db_url():
    url = os.getenv("DATABASE_URL")
    if url:
        return url
    db_user = os.getenv("DB_USER", "postgres")
    db_password = os.getenv("DB_PASSWORD", "postgres")
    db_host = os.getenv("DB_HOST", "localhost")
    db_port = os.getenv("DB_PORT", 5432)
    db_name = os.getenv("DB_NAME", "grocery")
    return f"postgresql+asyncpg://{db_user}:{db_password}@{db_host}:{db_port}/{db_name}"


def get_db_echo() -> bool:
    return os.getenv("DB_ECHO", "false").lower() in ("1", "true", "yes")


def get_secret_key() -> str:
    return os.getenv("SECRET_KEY", "your_secret_key")


ALGORITHM = os.getenv("ALGORITHM", "HS256")
ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", 60))


def get_order_placement_timeout() -> float:
    """Seconds a single placement may take before it is rolled back."""
    return float(os.getenv("ORDER_PLACEMENT_TIMEOUT", 10))


def get_order_conflict_retries() -> int:
    return int(os.getenv("ORDER_CONFLICT_RETRIES", 1))


def get_cors_origins():
    return [origin.strip() for origin in os.getenv("CORS_ORIGINS", "http://localhost:8000").split(",") if origin.strip()]


LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
