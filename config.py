import os
from decimal import Decimal
from dotenv import load_dotenv

# Загрузка .env
load_dotenv()

# База данных
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///binarymlm.db")

# Identity provider (Identity Toolkit REST admin API)
IDENTITY_TOOLKIT_URL = os.getenv("IDENTITY_TOOLKIT_URL", "https://identitytoolkit.googleapis.com")
IDENTITY_PROJECT_ID = os.getenv("IDENTITY_PROJECT_ID")
IDENTITY_ACCESS_TOKEN = os.getenv("IDENTITY_ACCESS_TOKEN")

# Session tokens
SESSION_TOKEN_SECRET = os.getenv("SESSION_TOKEN_SECRET")
SESSION_TOKEN_TTL = int(os.getenv("SESSION_TOKEN_TTL", "3600"))

# Web server
WEB_HOST = os.getenv("WEB_HOST", "0.0.0.0")
WEB_PORT = int(os.getenv("WEB_PORT", "8080"))

# Signup rate limit: attempts per window (seconds) per client address
SIGNUP_RATE_LIMIT_REQUESTS = int(os.getenv("SIGNUP_RATE_LIMIT_REQUESTS", "5"))
SIGNUP_RATE_LIMIT_WINDOW = int(os.getenv("SIGNUP_RATE_LIMIT_WINDOW", "900"))
# Peers whose X-Forwarded-For header is trusted (comma separated)
TRUSTED_PROXIES = [ip.strip() for ip in os.getenv("TRUSTED_PROXIES", "").split(",") if ip.strip()]

# Прочие настройки
DEFAULT_SPONSOR_ID = os.getenv("DEFAULT_SPONSOR_ID") or None
SIGNUP_ACTIVATION_AMOUNT = Decimal(os.getenv("SIGNUP_ACTIVATION_AMOUNT", "5"))
MAX_TRANSACTION_ATTEMPTS = int(os.getenv("MAX_TRANSACTION_ATTEMPTS", "5"))
MEMBER_CODE_PREFIX = os.getenv("MEMBER_CODE_PREFIX", "WG")
MEMBER_CODE_ATTEMPTS = 10
