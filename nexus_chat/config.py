from pydantic_settings import BaseSettings
from typing import Optional, List
import os


class Settings(BaseSettings):
    # Runtime Settings
    ENVIRONMENT: str = os.getenv("ENVIRONMENT", "development")
    LOG_LEVEL: str = "INFO"
    PORT: int = 5000

    # Storage Settings
    STORAGE_BACKEND: str = "memory"  # 'memory' or 'sql'
    DATABASE_URL: str = "sqlite:///./data/app.db"
    DB_TYPE: str = "sqlite"

    # Response Generator Settings
    RESPONSE_STRATEGY: str = "pattern"  # 'pattern' or 'dialogflow'
    RESPONDER_TIMEOUT_SECONDS: float = 10.0

    # Dialogflow Settings
    DIALOGFLOW_CREDENTIALS_FILE: Optional[str] = None  # service-account key JSON
    DIALOGFLOW_PROJECT_ID: Optional[str] = None  # defaults to the key's project_id
    DIALOGFLOW_LANGUAGE_CODE: str = "es"
    DIALOGFLOW_ENDPOINT: str = "https://dialogflow.googleapis.com/v2"

    # Chat Settings
    MAX_MESSAGE_LENGTH: int = 1000

    # CORS Settings
    FRONTEND_URL: str = "https://your-vercel-app.vercel.app"
    ALLOWED_DOMAINS: str = ""
    LOCAL_ORIGINS: List[str] = [
        "https://localhost:3000",
        "http://localhost:3000",
        "https://localhost:5173",
        "http://localhost:5173",
    ]
    VERCEL_ORIGIN_REGEX: str = r"^https://.*\.vercel\.app$"

    @property
    def cors_origins(self) -> List[str]:
        if self.ENVIRONMENT == "development":
            return ["*"]
        extra = [d.strip() for d in self.ALLOWED_DOMAINS.split(",") if d.strip()]
        return [self.FRONTEND_URL, *self.LOCAL_ORIGINS, *extra]

    class Config:
        env_file = ".env"

settings = Settings()
