import os

from dotenv import load_dotenv

load_dotenv()


def _flag(name: str, default: str = "0") -> bool:
    return os.environ.get(name, default).strip().lower() in ("1", "true", "yes", "on")


class Settings:
    # --- Database ---
    DATABASE_URL = os.environ.get("DATABASE_URL")
    DATABASE_PUBLIC_URL = os.environ.get("DATABASE_PUBLIC_URL")

    # --- Redis (Celery broker + dispatch lock) ---
    REDIS_URL = os.environ.get("REDIS_URL", "redis://localhost:6379/0")

    # --- OpenAI / intent resolution ---
    OPENAI_API_KEY = os.environ.get("OPENAI_API_KEY")
    OPENAI_MODEL = os.environ.get("OPENAI_MODEL", "gpt-4.1")
    OPENAI_TIMEOUT = float(os.environ.get("OPENAI_TIMEOUT", "30"))
    NLP_CONFIDENCE_THRESHOLD = float(os.environ.get("NLP_CONFIDENCE_THRESHOLD", "0.6"))

    # --- Telnyx (SMS) ---
    TELNYX_API_KEY = os.environ.get("TELNYX_API_KEY")
    TELNYX_PUBLIC_KEY = os.environ.get("TELNYX_PUBLIC_KEY")
    TELNYX_FROM_NUMBER = os.environ.get("TELNYX_FROM_NUMBER")
    SEND_TIMEOUT = float(os.environ.get("SEND_TIMEOUT", "10"))

    # --- Weather ---
    WEATHER_API_KEY = os.environ.get("WEATHER_API_KEY")
    WEATHER_API_URL = os.environ.get(
        "WEATHER_API_URL", "https://api.openweathermap.org/data/2.5/weather"
    )
    WEATHER_TIMEOUT = float(os.environ.get("WEATHER_TIMEOUT", "10"))
    WEATHER_DAILY_TIME = os.environ.get("WEATHER_DAILY_TIME", "09:00")

    # --- Scheduling and timezone ---
    DEFAULT_TIMEZONE = os.environ.get("DEFAULT_TIMEZONE", "Asia/Kolkata")
    DISPATCH_INTERVAL_SECONDS = float(os.environ.get("DISPATCH_INTERVAL_SECONDS", "60"))
    DISPATCH_LOCK_TIMEOUT = int(os.environ.get("DISPATCH_LOCK_TIMEOUT", "300"))
    DISPATCHER_IN_PROCESS = _flag("DISPATCHER_IN_PROCESS")

    # --- Conversation sessions ---
    SESSION_TTL_SECONDS = int(os.environ.get("SESSION_TTL_SECONDS", "1800"))
    INBOUND_DEDUP_TTL_SECONDS = int(os.environ.get("INBOUND_DEDUP_TTL_SECONDS", "600"))

    # --- Logging ---
    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

settings = Settings()
