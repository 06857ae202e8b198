from __future__ import annotations

from functools import lru_cache
from typing import List

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    app_name: str = "Officers Log"
    # Default to a local postgres database if not set in env
    database_url: str = "postgresql+asyncpg://localhost/officers_log"

    # Flag namespace shared with the tabletop module
    module_id: str = "sta-officers-log"

    # How long a callback offer waits for the player before auto-declining
    callback_timeout_seconds: float = 120

    # Determination is a bounded resource in [0, determination_max]
    determination_max: int = 3

    # The first arc needs this many linked logs; each earned arc adds one
    base_arc_length: int = 3

    # Value icons are assigned V1..Vn by Value sort order, capped at n
    value_icon_count: int = 8
    value_icon_template: str = "modules/sta-officers-log/assets/ValueIcons/V{n}.webp"
    default_log_icon: str = "systems/sta/assets/icons/voyagercombadgeicon.svg"

    # Debounce before follow-up UI actions (milliseconds); sequencing only
    render_settle_ms: int = 50

    # Reject raw WebSocket text above this size before JSON parsing
    max_message_bytes: int = 65_536

    cors_origins: List[str] = ["http://localhost:5173", "http://localhost:3000"]

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")


@lru_cache
def get_settings():
    return Settings()


def value_icon_path(n: int) -> str:
    """Icon path for the n-th Value (1-based)."""
    return get_settings().value_icon_template.format(n=n)
