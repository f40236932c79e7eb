"""
Pydantic model for application configuration.
Provides robust validation for all settings.
"""

import tempfile
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from vod_squirrel.exceptions import ConfigurationError

# https://github.com/SuperSonicHub1/twitch-graphql-api#getting-your-client-id
PUBLIC_GQL_CLIENT_ID = "kimne78kx3ncx6brgo4mv6wki5h1ko"
# Client the EventSub access token is issued for (twitchtokengenerator.com)
DEFAULT_OAUTH_CLIENT_ID = "gp762nuuoqcoxypju8c569th9wz7q5"

PRIVACY_STATUSES = ("public", "unlisted", "private")

# Fields that are never written to or shown from the INI file in clear text
SECRET_FIELDS = {"twitch_access_token", "youtube_oauth_token"}


class AppConfig(BaseModel):
    """A validated configuration model for the application."""

    model_config = ConfigDict(validate_assignment=True, str_strip_whitespace=True)

    # Twitch
    twitch_client_id: str = PUBLIC_GQL_CLIENT_ID
    twitch_oauth_client_id: str = DEFAULT_OAUTH_CLIENT_ID
    twitch_access_token: str = ""

    # YouTube
    youtube_oauth_token: str = ""
    privacy_status: str = "unlisted"

    # Download Settings
    parallelism: int = 20
    segment_attempts: int = 3
    retry_base_delay: float = 1.5
    segment_timeout: float = 0.0
    temp_dir: str = ""
    cleanup: bool = True

    # Event Session
    keepalive_timeout: float = 40.0
    reconnect_cooldown: float = 1.0

    # Internal fields not loaded from INI file
    config_path: str = Field("", repr=False)

    @field_validator("parallelism")
    @classmethod
    def validate_parallelism(cls, v: int) -> int:
        if v < 1 or v > 64:
            raise ValueError("Parallelism must be between 1 and 64.")
        return v

    @field_validator("segment_attempts")
    @classmethod
    def validate_attempts(cls, v: int) -> int:
        if v < 1 or v > 10:
            raise ValueError("Segment attempts must be between 1 and 10.")
        return v

    @field_validator("retry_base_delay", "segment_timeout", "reconnect_cooldown")
    @classmethod
    def validate_non_negative(cls, v: float) -> float:
        if v < 0:
            raise ValueError("Delays and timeouts cannot be negative.")
        return v

    @field_validator("keepalive_timeout")
    @classmethod
    def validate_keepalive(cls, v: float) -> float:
        if v < 10:
            raise ValueError("Keepalive timeout must be at least 10 seconds.")
        return v

    @field_validator("privacy_status")
    @classmethod
    def validate_privacy(cls, v: str) -> str:
        v = v.lower()
        if v not in PRIVACY_STATUSES:
            raise ValueError(
                f"Privacy status must be one of: {', '.join(PRIVACY_STATUSES)}."
            )
        return v

    @model_validator(mode="after")
    def validate_temp_dir(self) -> "AppConfig":
        """An explicit temp_dir must point at an existing directory."""
        if self.temp_dir and not Path(self.temp_dir).expanduser().is_dir():
            raise ValueError(
                f"Temporary directory '{self.temp_dir}' is not a valid directory."
            )
        return self

    @property
    def work_root(self) -> Path:
        """Directory under which per-video working directories are created."""
        if self.temp_dir:
            return Path(self.temp_dir).expanduser()
        return Path(tempfile.gettempdir())

    @property
    def segment_timeout_or_none(self) -> float | None:
        return self.segment_timeout or None

    def require_twitch_token(self) -> str:
        if not self.twitch_access_token:
            raise ConfigurationError(
                "A Twitch access token is required to subscribe to channel events. "
                "Set 'twitch_access_token' in the config or TWITCH_OAUTH_ACCESS_TOKEN."
            )
        return self.twitch_access_token

    def require_youtube_token(self) -> str:
        if not self.youtube_oauth_token:
            raise ConfigurationError(
                "A YouTube OAuth token is required to upload videos. "
                "Set 'youtube_oauth_token' in the config or OAUTH_TOKEN."
            )
        return self.youtube_oauth_token

    @classmethod
    def get_ini_keys(cls) -> set[str]:
        """Returns a set of all keys that are expected in the INI file."""
        internal_fields = {"config_path"}
        return {key for key in cls.model_fields if key not in internal_fields}
