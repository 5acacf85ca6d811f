# config.py
import os
import logging
from dotenv import load_dotenv

load_dotenv()


def _flag(name, default):
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


class Settings:
    DATABASE_FILE = os.getenv("DATABASE_FILE", "zenbank_db.json")
    OLLAMA_URL = os.getenv("OLLAMA_URL", "http://localhost:11434")
    OLLAMA_MODEL = os.getenv("OLLAMA_MODEL", "llama3.2")
    OLLAMA_TIMEOUT = int(os.getenv("OLLAMA_TIMEOUT", "30"))
    USE_OLLAMA = _flag("USE_OLLAMA", "true")
    IDLE_TIMEOUT_SECONDS = int(os.getenv("IDLE_TIMEOUT_SECONDS", "300"))
    IDLE_WARNING_SECONDS = int(os.getenv("IDLE_WARNING_SECONDS", "60"))
    STARTING_BALANCE = float(os.getenv("STARTING_BALANCE", "1000"))
    MAX_LOGIN_ATTEMPTS = int(os.getenv("MAX_LOGIN_ATTEMPTS", "5"))
    LOCKOUT_MINUTES = int(os.getenv("LOCKOUT_MINUTES", "15"))
    BCRYPT_ROUNDS = int(os.getenv("BCRYPT_ROUNDS", "12"))
    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

settings = Settings()


def configure_logging(level=None):
    """Install a basic stderr handler once; Streamlit reruns call this repeatedly."""
    logging.basicConfig(
        level=(level or settings.LOG_LEVEL).upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
