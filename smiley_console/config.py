from dotenv import load_dotenv
import os

# Load .env into environment variables
load_dotenv()


def get_valid_api_keys() -> set[str]:
    keys = os.getenv("CONSOLE_API_KEYS", "")
    return {k.strip() for k in keys.split(",") if k.strip()}


def get_clinic_api_url() -> str:
    return os.getenv("CLINIC_API_URL", "http://localhost:3000").rstrip("/")


def get_request_timeout() -> float:
    return float(os.getenv("CLINIC_API_TIMEOUT", "30"))


def get_database_url() -> str:
    return os.getenv("CONSOLE_DATABASE_URL", "sqlite:///console_sessions.db")


def get_log_level() -> str:
    return os.getenv("LOG_LEVEL", "INFO").upper()


def is_dev_mode() -> bool:
    return os.getenv("DEV_MODE") == "1"
