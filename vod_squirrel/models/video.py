"""
Pydantic models for video metadata returned by the Twitch GraphQL API.
"""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class VideoStatus(str, Enum):
    RECORDED = "RECORDED"
    RECORDING = "RECORDING"


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class Channel(_CamelModel):
    login: str
    display_name: str


class Game(_CamelModel):
    display_name: str


class VideoInfo(_CamelModel):
    """Metadata of a single past broadcast (VOD)."""

    id: str
    title: str
    description: str | None = None
    created_at: datetime
    length_seconds: int = 0
    view_count: int = 0
    status: VideoStatus = VideoStatus.RECORDED
    game: Game | None = None
    owner: Channel

    @property
    def numeric_id(self) -> int:
        return int(self.id)

    @property
    def game_name(self) -> str:
        return self.game.display_name if self.game else "Unknown"


class VariantInfo(BaseModel):
    """A quality variant listed in the master playlist."""

    uri: str
    resolution: str | None = None
    bandwidth: int | None = None
    name: str | None = Field(default=None, description="Media group name, if any.")
