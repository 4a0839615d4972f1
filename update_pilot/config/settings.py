import os
from dataclasses import dataclass, field
from typing import Optional

from dotenv import load_dotenv

from ..models import WorkflowConfig

load_dotenv(override=False)

DEFAULT_POLL_INTERVAL = 2.0
DEFAULT_MAX_POLL_DURATION = 600.0  # 10 minutes
DEFAULT_REQUEST_TIMEOUT = 30


@dataclass
class ManagerSettings:
    """Connection and polling settings for one management API instance."""
    base_url: Optional[str] = None
    api_token: Optional[str] = None
    poll_interval: float = DEFAULT_POLL_INTERVAL
    max_poll_duration: float = DEFAULT_MAX_POLL_DURATION
    request_timeout: int = DEFAULT_REQUEST_TIMEOUT

    @classmethod
    def from_env(cls):
        """Create settings from environment variables (and a .env file if present)."""
        return cls(
            base_url=os.getenv("UPDATE_PILOT_URL"),
            api_token=os.getenv("UPDATE_PILOT_TOKEN"),
            poll_interval=float(
                os.getenv("UPDATE_PILOT_POLL_INTERVAL", str(DEFAULT_POLL_INTERVAL))
            ),
            max_poll_duration=float(
                os.getenv(
                    "UPDATE_PILOT_MAX_POLL_DURATION", str(DEFAULT_MAX_POLL_DURATION)
                )
            ),
            request_timeout=int(
                os.getenv("UPDATE_PILOT_REQUEST_TIMEOUT", str(DEFAULT_REQUEST_TIMEOUT))
            ),
        )


@dataclass
class SiteProfile:
    """
    A named management instance loaded from a YAML profile.

    The token itself never lives in the profile; ``token_env`` names the
    environment variable that holds it.
    """
    name: str
    url: str
    token_env: Optional[str] = None
    workflow: WorkflowConfig = field(default_factory=WorkflowConfig)

    def resolve_token(self) -> Optional[str]:
        if not self.token_env:
            return None
        return os.getenv(self.token_env)
