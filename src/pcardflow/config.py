"""Runtime configuration read from the environment (and a local .env file)."""

import os

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict

DEFAULT_GODADDY_API_URL = "https://api.godaddy.com"
DEFAULT_MODEL = "claude-haiku-4-5"


class Settings(BaseModel):
    """Credentials and knobs for the collaborators.

    Missing credentials are a normal state: the matching integration reports
    itself as not configured instead of failing.
    """

    model_config = ConfigDict(frozen=True)

    godaddy_api_key: str | None = None
    godaddy_api_secret: str | None = None
    godaddy_shopper_id: str | None = None
    godaddy_api_url: str = DEFAULT_GODADDY_API_URL
    anthropic_api_key: str | None = None
    model: str = DEFAULT_MODEL
    db_path: str = "pcardflow.db"
    http_timeout: float = 30.0

    @property
    def godaddy_configured(self) -> bool:
        return bool(self.godaddy_api_key and self.godaddy_api_secret)

    @property
    def vision_configured(self) -> bool:
        return bool(self.anthropic_api_key)

    @classmethod
    def from_env(cls) -> "Settings":
        load_dotenv()
        return cls(
            godaddy_api_key=os.getenv("GODADDY_API_KEY") or None,
            godaddy_api_secret=os.getenv("GODADDY_API_SECRET") or None,
            godaddy_shopper_id=os.getenv("GODADDY_SHOPPER_ID") or None,
            godaddy_api_url=os.getenv("GODADDY_API_URL", DEFAULT_GODADDY_API_URL),
            anthropic_api_key=os.getenv("ANTHROPIC_API_KEY") or None,
            model=os.getenv("PCARDFLOW_MODEL", DEFAULT_MODEL),
            db_path=os.getenv("PCARDFLOW_DB", "pcardflow.db"),
            http_timeout=float(os.getenv("PCARDFLOW_HTTP_TIMEOUT", "30")),
        )
