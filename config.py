import os
from dotenv import load_dotenv

# Load environment variables from .env
load_dotenv()

def get_env_var(name: str) -> str:
    """Get environment variable or raise a clear error if missing."""
    value = os.getenv(name)
    if not value:
        raise RuntimeError(
            f"❌ Missing required environment variable: {name}\n"
            f"👉 Did you copy .env.example to .env and fill in your keys?"
        )
    return value

def _env_bool(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).lower() in {"1", "true", "yes", "on"}

# Optional vars (with defaults)
DEBUG = _env_bool("DEBUG")
PORT = int(os.getenv("PORT", "8000"))

# Persistence is disabled when unset; the API falls back to in-memory stores
DATABASE_URL = os.getenv("DATABASE_URL")

# Pipeline tuning
GAS_PRICE_WARNING_GWEI = float(os.getenv("GAS_PRICE_WARNING_GWEI", "50"))
HIGH_SLIPPAGE_PCT = float(os.getenv("HIGH_SLIPPAGE_PCT", "1.0"))
QUOTE_TTL_SECONDS = float(os.getenv("QUOTE_TTL_SECONDS", "30"))
PROVIDER_TIMEOUT_SECONDS = float(os.getenv("PROVIDER_TIMEOUT_SECONDS", "10"))
APPROVAL_TTL_SECONDS = int(os.getenv("APPROVAL_TTL_SECONDS", "1800"))
DEFAULT_SLIPPAGE_BPS = int(os.getenv("DEFAULT_SLIPPAGE_BPS", "50"))
DEFAULT_GAS_PRICE_GWEI = float(os.getenv("DEFAULT_GAS_PRICE_GWEI", "30"))

# Providers
ZEROX_API_KEY = os.getenv("ZEROX_API_KEY")
ZEROX_BASE_URL = os.getenv("ZEROX_BASE_URL", "https://api.0x.org")
LIFI_BASE_URL = os.getenv("LIFI_BASE_URL", "https://li.quest/v1")
ALCHEMY_API_KEY = os.getenv("ALCHEMY_API_KEY")

# Classifier LLM fallback
CLASSIFIER_AI_FALLBACK = _env_bool("CLASSIFIER_AI_FALLBACK")
GEMINI_MODEL_NAME = os.getenv("GEMINI_MODEL_NAME", "gemini-1.5-flash")
