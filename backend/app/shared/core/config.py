from pydantic_settings import BaseSettings, SettingsConfigDict

class Settings(BaseSettings):
    PROJECT_NAME: str = "WhatsApp Connect"
    API_V1_STR: str = "/api/v1"
    CORS_ORIGIN: str = "http://localhost:3000"
    DATABASE_URL: str = "sqlite+aiosqlite:///./whatsapp_connect.db"
    LOG_LEVEL: str = "INFO"

    # Meta app credentials (WhatsApp Cloud API / Embedded Signup)
    WHATSAPP_APP_ID: str = ""
    WHATSAPP_APP_SECRET: str = ""
    WHATSAPP_REDIRECT_URI: str = "http://localhost:8000/api/v1/whatsapp/tenants/oauth/callback"
    WHATSAPP_CONFIGURATION_ID: str = ""  # Optional: Embedded Signup configuration

    # Webhook
    WHATSAPP_WEBHOOK_VERIFY_TOKEN: str = ""
    WHATSAPP_VERIFY_WEBHOOK_SIGNATURE: bool = False  # Check X-Hub-Signature-256 against the app secret

    # Graph API
    WHATSAPP_GRAPH_API_BASE: str = "https://graph.facebook.com"
    WHATSAPP_API_VERSION: str = "v22.0"
    WHATSAPP_CONNECT_TIMEOUT: float = 10.0
    WHATSAPP_READ_TIMEOUT: float = 30.0

    # OAuth state tokens older than this are rejected on callback
    WHATSAPP_OAUTH_STATE_TTL_SECONDS: int = 900

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=True,
        extra="ignore"
    )

    @property
    def graph_api_url(self) -> str:
        return f"{self.WHATSAPP_GRAPH_API_BASE.rstrip('/')}/{self.WHATSAPP_API_VERSION}"

settings = Settings()
