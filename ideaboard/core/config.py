import logging

from pydantic_settings import BaseSettings
from pydantic import ConfigDict
from typing import List, Optional, Tuple

class Settings(BaseSettings):
    # Environment
    APP_NAME: str = "Ideaboard"
    ENV: str = "development"
    CONFIG_STRICT: bool = False
    LOG_LEVEL: str = "INFO"

    # Database (unset = in-memory store)
    DATABASE_URL: Optional[str] = None
    SQL_ECHO: bool = False

    # Authenticated accounts (Bearer JWT)
    JWT_SECRET: Optional[str] = None
    JWT_ALGORITHM: str = "HS256"

    # Admin access
    ADMIN_KEY: Optional[str] = None
    TRUSTED_NETWORKS: str = ""  # comma-separated CIDRs, e.g. "10.0.0.0/8,127.0.0.1/32"
    # Reverse proxies whose X-Forwarded-For is honoured, e.g. "127.0.0.1,10.0.0.0/8".
    # Empty means the socket peer is the client.
    TRUSTED_PROXIES: str = ""

    # Submission gate
    PAYWALL_ENABLED_DEFAULT: bool = True

    # Voting policy
    DOWNVOTE_THRESHOLD: int = 100
    REWARD_BATCH_SIZE: int = 3
    LINK_VISIBILITY_THRESHOLD: int = 10
    VOTE_COOLDOWN_SECONDS: float = 5.0
    IP_VOTE_WINDOWS: str = "10:2,60:5"  # window_seconds:max_votes pairs
    COMMENT_VOTE_COOLDOWN_SECONDS: float = 2.0

    # Submissions flagged with #test are removed after this delay
    TEST_SUBMISSION_TTL_SECONDS: float = 10.0

    # AI grader (Groq)
    GROQ_API_KEY: Optional[str] = None
    GRADER_MODEL: str = "llama-3.1-8b-instant"

    # Newsletter relay (Beehiiv)
    BEEHIIV_API_KEY: Optional[str] = None
    BEEHIIV_PUBLICATION_ID: Optional[str] = None

    # Spreadsheet backup sink
    BACKUP_CSV_PATH: Optional[str] = None

    CORS_ORIGINS: str = "http://localhost:3000"

    model_config = ConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    def trusted_networks(self) -> List[str]:
        return [part.strip() for part in self.TRUSTED_NETWORKS.split(",") if part.strip()]

    def trusted_proxies(self) -> List[str]:
        return [part.strip() for part in self.TRUSTED_PROXIES.split(",") if part.strip()]

    def ip_vote_windows(self) -> List[Tuple[float, int]]:
        """Parse IP_VOTE_WINDOWS into (window_seconds, max_votes) pairs."""
        windows: List[Tuple[float, int]] = []
        for part in self.IP_VOTE_WINDOWS.split(","):
            part = part.strip()
            if not part:
                continue
            window, _, limit = part.partition(":")
            windows.append((float(window), int(limit)))
        return windows

    def cors_origins(self) -> List[str]:
        return [origin.strip() for origin in self.CORS_ORIGINS.split(",") if origin.strip()]

settings = Settings()


def validate_config(strict: Optional[bool] = None, settings_obj: Optional[Settings] = None, logger: Optional[logging.Logger] = None) -> bool:
    """Validate required configuration.

    In strict mode raise RuntimeError; otherwise emit warnings only.
    Secrets are not logged, only missing keys.
    """
    cfg = settings_obj or settings
    log = logger or logging.getLogger("ideaboard")
    strict_mode = strict if strict is not None else getattr(cfg, "CONFIG_STRICT", False)

    required_keys = [
        "DATABASE_URL",
        "JWT_SECRET",
        "ADMIN_KEY",
    ]

    missing = [key for key in required_keys if not getattr(cfg, key, None)]
    if missing:
        message = f"Missing required configuration: {', '.join(missing)}"
        if strict_mode:
            raise RuntimeError(message)
        log.warning(message)

    return True
