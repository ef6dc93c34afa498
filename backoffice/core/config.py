import os

from dotenv import load_dotenv

# Loads the .env at the project root
load_dotenv()

_TRUTHY = {"1", "true", "yes", "on"}

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./backoffice.db")
ENV = os.getenv("ENV", "dev")
ENV_NORMALIZED = ENV.lower()
IS_DEV = ENV_NORMALIZED in {"dev", "development", "local"}
IS_TEST = ENV_NORMALIZED == "test"
IS_PROD = ENV_NORMALIZED in {"prod", "production"}

# Site origin, used to build OAuth callback and post-login redirect URLs
SITE_URL = os.getenv("SITE_URL", "http://localhost:3000").strip().rstrip("/")

# CORS
_cors_env = os.getenv("CORS_ORIGINS", "")
CORS_ORIGINS = [origin.strip() for origin in _cors_env.split(",") if origin.strip() and origin.strip() != "*"]
if not CORS_ORIGINS and IS_DEV:
    CORS_ORIGINS = [SITE_URL]

# Owner identity (JWT issued by the hosted auth provider)
AUTH_JWT_SECRET = os.getenv("AUTH_JWT_SECRET", "")
AUTH_JWT_ALGORITHM = os.getenv("AUTH_JWT_ALGORITHM", "HS256")
AUTH_JWT_AUDIENCE = os.getenv("AUTH_JWT_AUDIENCE", "").strip() or None
AUTH_ACCESS_TOKEN_COOKIE = os.getenv("AUTH_ACCESS_TOKEN_COOKIE", "access_token")

# Cookies
COOKIE_SECURE = os.getenv("COOKIE_SECURE", "1" if IS_PROD else "0").strip().lower() in _TRUTHY
COOKIE_SAMESITE = os.getenv("COOKIE_SAMESITE", "lax").strip().lower()
if COOKIE_SAMESITE not in {"lax", "strict", "none"}:
    COOKIE_SAMESITE = "lax"
COOKIE_DOMAIN = os.getenv("COOKIE_DOMAIN", "").strip() or None

STAFF_SESSION_MAX_AGE_SECONDS = int(os.getenv("STAFF_SESSION_MAX_AGE_SECONDS", str(8 * 60 * 60)))
ADMIN_SESSION_MAX_AGE_SECONDS = int(os.getenv("ADMIN_SESSION_MAX_AGE_SECONDS", str(30 * 60)))
STAFF_BUSINESS_COOKIE_MAX_AGE_SECONDS = int(os.getenv("STAFF_BUSINESS_COOKIE_MAX_AGE_SECONDS", str(60 * 60)))
STAFF_BUSINESS_COOKIE_SECRET = os.getenv("STAFF_BUSINESS_COOKIE_SECRET", "")

# PIN hashing cost per credential tier
STAFF_PIN_BCRYPT_ROUNDS = int(os.getenv("STAFF_PIN_BCRYPT_ROUNDS", "10"))
ADMIN_PIN_BCRYPT_ROUNDS = int(os.getenv("ADMIN_PIN_BCRYPT_ROUNDS", "12"))

# Rate limiting: "memory" is process-local, "database" is shared between instances
RATE_LIMIT_BACKEND = os.getenv("RATE_LIMIT_BACKEND", "memory").strip().lower()
if RATE_LIMIT_BACKEND not in {"memory", "database"}:
    RATE_LIMIT_BACKEND = "memory"

# When enabled, a new staff sign-in terminates the staff member's other active sessions
STAFF_SINGLE_SESSION = os.getenv("STAFF_SINGLE_SESSION", "0").strip().lower() in _TRUTHY
