"""Environment-driven settings shared by the app, the pipeline and the scripts."""
import os


def _env(name: str, default: str = "") -> str:
    return os.getenv(name, default).strip()


DATABASE_URL = _env("DATABASE_URL", "sqlite:///./procurement.db")

# Natural-language oracle. Empty base URL means deterministic mock extraction/evaluation.
OLLAMA_BASE_URL = _env("OLLAMA_BASE_URL")
OLLAMA_MODEL = _env("OLLAMA_MODEL", "llama3")

# Mailbox provider (push path). All three credentials are required to enable it.
GMAIL_CLIENT_ID = _env("GMAIL_CLIENT_ID")
GMAIL_CLIENT_SECRET = _env("GMAIL_CLIENT_SECRET")
GMAIL_REFRESH_TOKEN = _env("GMAIL_REFRESH_TOKEN")
GMAIL_PUBSUB_TOPIC = _env("GMAIL_PUBSUB_TOPIC")
GMAIL_USER = _env("GMAIL_USER", "me")

# Outbound mail. Empty host means messages are logged instead of sent.
SMTP_HOST = _env("SMTP_HOST")
SMTP_PORT = int(_env("SMTP_PORT", "587"))
SMTP_USER = _env("SMTP_USER")
SMTP_PASS = _env("SMTP_PASS")
FROM_EMAIL = _env("FROM_EMAIL", "noreply@procurement.com")
FROM_NAME = _env("FROM_NAME", "Procurement Team")

CORS_ORIGINS = [o.strip() for o in _env("CORS_ORIGINS", "http://localhost:5173").split(",") if o.strip()]

# Renew the mailbox watch once this fraction of its lifetime has elapsed.
WATCH_RENEWAL_FRACTION = float(_env("WATCH_RENEWAL_FRACTION", "0.85"))
# Unread messages scanned when no push cursor exists yet.
BOOTSTRAP_SCAN_LIMIT = int(_env("BOOTSTRAP_SCAN_LIMIT", "5"))


def ai_provider() -> str:
    """Which oracle backend is configured for extraction and compliance."""
    return "ollama" if OLLAMA_BASE_URL else "mock"


def gmail_configured() -> bool:
    return bool(GMAIL_CLIENT_ID and GMAIL_CLIENT_SECRET and GMAIL_REFRESH_TOKEN)
