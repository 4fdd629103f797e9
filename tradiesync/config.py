from pydantic_settings import BaseSettings
from pydantic import field_validator, model_validator
from functools import lru_cache


# Master secrets that must never be accepted in production
WEAK_SECRET_KEYS = {
    "changeme",
    "secret",
    "password",
    "development-encryption-key-change-in-production",
    "your-32-character-random-key",
    "00000000000000000000000000000000",
}

MIN_ENCRYPTION_KEY_LENGTH = 32


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database
    DATABASE_URL: str = "postgresql+asyncpg://localhost:5432/tradiesync"

    @field_validator('DATABASE_URL', mode='before')
    @classmethod
    def convert_database_url(cls, v: str) -> str:
        """Convert postgresql:// to postgresql+asyncpg:// for async support."""
        if v and v.startswith('postgresql://'):
            return v.replace('postgresql://', 'postgresql+asyncpg://', 1)
        return v

    # Master secret for token encryption and OAuth state signing.
    # Per-role keys are derived from it (see tradiesync.security.keys).
    ENCRYPTION_KEY: str | None = None

    @field_validator('ENCRYPTION_KEY')
    @classmethod
    def validate_encryption_key(cls, v: str | None) -> str | None:
        """Reject short secrets outright; absence is checked per environment."""
        if v is not None and len(v) < MIN_ENCRYPTION_KEY_LENGTH:
            raise ValueError(
                f"ENCRYPTION_KEY must be at least {MIN_ENCRYPTION_KEY_LENGTH} characters long"
            )
        return v

    # Identity service (bearer tokens are HS256 JWTs issued by the session provider)
    AUTH_JWT_SECRET: str = "development-jwt-secret-change-in-production"
    AUTH_JWT_ALGORITHM: str = "HS256"
    AUTH_JWT_AUDIENCE: str | None = "authenticated"

    # CORS
    FRONTEND_URL: str = "http://localhost:5173"
    ALLOWED_ORIGINS: str = "https://tradiemate.com.au,https://www.tradiemate.com.au,https://app.tradiemate.com.au"
    DEV_ORIGIN_REGEX: str = (
        r"^(https?://(localhost|127\.0\.0\.1|10\.\d+\.\d+\.\d+|192\.168\.\d+\.\d+"
        r"|172\.(1[6-9]|2\d|3[01])\.\d+\.\d+)(:\d+)?|capacitor://localhost|ionic://localhost)$"
    )

    # Xero
    XERO_CLIENT_ID: str | None = None
    XERO_CLIENT_SECRET: str | None = None
    XERO_REDIRECT_URI: str | None = None
    XERO_SALES_ACCOUNT_CODE: str = "200"
    XERO_TAX_TYPE: str = "OUTPUT"

    # QuickBooks Online
    QUICKBOOKS_CLIENT_ID: str | None = None
    QUICKBOOKS_CLIENT_SECRET: str | None = None
    QUICKBOOKS_REDIRECT_URI: str | None = None
    QUICKBOOKS_ENVIRONMENT: str = "production"

    # MYOB AccountRight
    MYOB_CLIENT_ID: str | None = None
    MYOB_CLIENT_SECRET: str | None = None
    MYOB_REDIRECT_URI: str | None = None
    MYOB_INCOME_ACCOUNT_UID: str | None = None
    MYOB_TAX_CODE_UID: str | None = None

    # Invoice mapping defaults
    INVOICE_CURRENCY: str = "AUD"
    DEFAULT_COUNTRY: str = "Australia"

    # Rate limits (requests per window)
    OAUTH_CONNECT_RATE_LIMIT: int = 10
    OAUTH_CONNECT_RATE_WINDOW: int = 60
    SYNC_RATE_LIMIT: int = 5
    SYNC_RATE_WINDOW: int = 60
    PAYMENT_SETTINGS_RATE_LIMIT: int = 10
    PAYMENT_SETTINGS_RATE_WINDOW: int = 60
    RATE_LIMIT_RETENTION_SECONDS: int = 86400

    # Sync
    SYNC_CONCURRENCY: int = 4
    PROVIDER_HTTP_TIMEOUT: float = 30.0
    OAUTH_STATE_TTL_SECONDS: int = 600

    # Observability
    SENTRY_DSN: str | None = None
    VERSION: str = "1.0.0"

    # Environment
    ENVIRONMENT: str = "development"
    DEBUG: bool = True
    DOCS_ENABLED: bool = True

    @model_validator(mode="after")
    def validate_production(self) -> "Settings":
        """Fail fast on insecure configuration outside development."""
        if self.is_production:
            if not self.ENCRYPTION_KEY:
                raise ValueError("ENCRYPTION_KEY must be set in production")
            if self.ENCRYPTION_KEY.lower() in WEAK_SECRET_KEYS:
                raise ValueError("ENCRYPTION_KEY is a known weak value")
            if self.AUTH_JWT_SECRET.startswith("development-"):
                raise ValueError("AUTH_JWT_SECRET must be set in production")
            self.DEBUG = False
            self.DOCS_ENABLED = False
        return self

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT in ("production", "staging")

    @property
    def sqlalchemy_echo(self) -> bool:
        # SECURITY: statement echo can leak bound token values
        return self.DEBUG and not self.is_production

    @property
    def allowed_origins(self) -> list[str]:
        origins = [o.strip() for o in self.ALLOWED_ORIGINS.split(",") if o.strip()]
        if self.FRONTEND_URL and self.FRONTEND_URL not in origins:
            origins.insert(0, self.FRONTEND_URL)
        return origins

    def redirect_uri_for(self, provider: str) -> str:
        """Configured redirect URI for a provider, defaulting to the settings page."""
        configured = {
            "xero": self.XERO_REDIRECT_URI,
            "quickbooks": self.QUICKBOOKS_REDIRECT_URI,
            "myob": self.MYOB_REDIRECT_URI,
        }.get(provider)
        return configured or f"{self.FRONTEND_URL}/settings/integrations"

    class Config:
        env_file = ".env"
        case_sensitive = True


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


settings = get_settings()
