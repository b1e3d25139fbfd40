"""Application settings (pydantic-settings + TOML)"""

from pathlib import Path

from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
    TomlConfigSettingsSource,
)


class Settings(BaseSettings):
    """Settings loaded from settings.toml and environment variables"""

    model_config = SettingsConfigDict(
        toml_file="settings.toml",
    )

    # --- DB ---
    DB_PATH: str = "data/investkaps.db"

    # --- HTTP ---
    CORS_ORIGINS: list[str] = ["http://localhost:5173"]
    PUBLIC_BASE_URL: str = "http://localhost:8000"  # used for stored file links

    # --- Logging ---
    LOG_LEVEL: str = "INFO"
    LOG_DIR: str = "logs"

    # --- Clerk ---
    CLERK_SECRET_KEY: str = ""
    CLERK_API_URL: str = "https://api.clerk.com/v1"
    CLERK_JWKS_URL: str = ""          # set to verify session tokens locally
    CLERK_WEBHOOK_SECRET: str = ""    # svix "whsec_..." secret

    # --- Zerodha Kite ---
    KITE_API_KEY: str = ""
    KITE_API_URL: str = "https://api.kite.trade"
    KITE_INSTRUMENTS_TTL: int = 6 * 60 * 60

    # --- LTP service ---
    LTP_API_URL: str = "https://mstock-ltp.onrender.com"
    LTP_TIMEOUT: float = 10.0

    # --- Price refresh ---
    PRICE_PROVIDER: str = "kite"      # "kite" | "ltp"
    PRICE_STALE_MINUTES: int = 10

    # --- Razorpay ---
    RAZORPAY_KEY_ID: str = ""
    RAZORPAY_KEY_SECRET: str = ""
    RAZORPAY_API_URL: str = "https://api.razorpay.com/v1"

    # --- SMTP ---
    SMTP_HOST: str = ""
    SMTP_PORT: int = 587
    SMTP_USER: str = ""
    SMTP_PASSWORD: str = ""
    EMAIL_FROM: str = "InvestKaps <no-reply@investkaps.com>"
    FRONTEND_URL: str = "https://www.investkaps.com"

    # --- Telegram ---
    TELEGRAM_BOT_TOKEN: str = ""
    TELEGRAM_CHAT_ID: str = ""        # fallback chat when no plan has one

    # --- 2Factor OTP ---
    TWOFACTOR_API_KEY: str = ""
    TWOFACTOR_API_URL: str = "https://2factor.in/API/V1"

    # --- NSE KRA KYC ---
    KRA_BASE_URL: str = "https://www.nsekra.com/intermediary"
    KRA_USERNAME: str = ""
    KRA_PASSWORD: str = ""
    KRA_PASS_KEY: str = ""
    KRA_POS_CODE: str = ""

    # --- Leegality ---
    LEEGALITY_API_URL: str = "https://app1.leegality.com/api/v3.0"
    LEEGALITY_AUTH_TOKEN: str = ""
    LEEGALITY_PROFILE_ID: str = ""

    # --- Storage ---
    STORAGE_DIR: str = "data/files"
    SYMBOLS_FILE: str = "data/symbols.json"

    # --- Scheduler ---
    SCHEDULER_TIMEZONE: str = "Asia/Kolkata"
    SCHEDULER_ENABLED: bool = True

    # --- Test / setup switches ---
    ALLOW_TEST_BYPASS: bool = False
    ADMIN_SETUP_KEY: str = ""

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        """Priority: init kwargs > environment > TOML file"""
        return (
            init_settings,
            env_settings,
            TomlConfigSettingsSource(settings_cls),
        )

    @property
    def database_url(self) -> str:
        """SQLite DB URL"""
        db_path = Path(self.DB_PATH)
        db_path.parent.mkdir(parents=True, exist_ok=True)
        return f"sqlite:///{db_path}"

    @property
    def storage_path(self) -> Path:
        """Root directory for uploaded and generated files"""
        path = Path(self.STORAGE_DIR)
        path.mkdir(parents=True, exist_ok=True)
        return path


settings = Settings()
