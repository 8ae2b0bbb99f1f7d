from dataclasses import dataclass, field
from typing import List, Optional
from dotenv import load_dotenv
import os


def _split_origins(value: str) -> List[str]:
    return [origin.strip() for origin in value.split(",") if origin.strip()]


@dataclass
class Settings:
    """Runtime configuration, read from the environment (and a .env file if present)."""
    database_path: str = "events.db"
    secret_key: str = "default-secret"
    algorithm: str = "HS256"
    access_token_expire_minutes: int = 60 * 24
    cors_origins: List[str] = field(default_factory=lambda: ["*"])
    environment: str = "development"
    cancellation_cutoff_hours: Optional[float] = None

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    @classmethod
    def from_env(cls) -> "Settings":
        load_dotenv()
        cutoff = os.getenv("CANCELLATION_CUTOFF_HOURS")
        return cls(
            database_path=os.getenv("DATABASE_PATH", "events.db"),
            secret_key=os.getenv("SECRET_KEY", "default-secret"),
            algorithm=os.getenv("ALGORITHM", "HS256"),
            access_token_expire_minutes=int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", 60 * 24)),
            cors_origins=_split_origins(os.getenv("CORS_ORIGIN", "*")),
            environment=os.getenv("ENVIRONMENT", "development"),
            cancellation_cutoff_hours=float(cutoff) if cutoff else None,
        )
