"""Emby webhook payloads."""

from pydantic import BaseModel, ConfigDict, Field, field_validator

LIBRARY_NEW_EVENT = "library.new"


class LibraryItem(BaseModel):
    """The ``Item`` block of an Emby event. Every field is optional."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    name: str | None = Field(None, alias="Name")
    index_number: int | None = Field(None, alias="IndexNumber")
    production_year: int | None = Field(None, alias="ProductionYear")
    series_name: str | None = Field(None, alias="SeriesName")
    series_id: str | None = Field(None, alias="SeriesId")
    season_name: str | None = Field(None, alias="SeasonName")
    id: str | None = Field(None, alias="Id")
    type: str | None = Field(None, alias="Type")

    @field_validator("series_id", "id", mode="before")
    @classmethod
    def _id_to_str(cls, value):
        if value is None or value == "":
            return None
        return str(value)

    @property
    def dedup_key(self) -> str | None:
        """Series id for episodes, the item's own id otherwise."""
        return self.series_id or self.id

    @property
    def is_episode(self) -> bool:
        return bool(self.series_name)

    def announcement(self) -> str:
        year = f" ({self.production_year})" if self.production_year else ""
        if self.is_episode:
            index = self.index_number if self.index_number is not None else "?"
            return (
                f"新剧集入库: {self.series_name}{year}\n"
                f"{self.season_name or ''} - 第{index}集 - {self.name or ''}"
            )
        return f"新片入库: {self.name or '未知'}{year}"


class WebhookPayload(BaseModel):
    """An Emby notification event."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    event: str = Field("", alias="Event")
    title: str | None = Field(None, alias="Title")
    description: str | None = Field(None, alias="Description")
    date: str | None = Field(None, alias="Date")
    item: LibraryItem | None = Field(None, alias="Item")


class WebhookResponse(BaseModel):
    ok: bool = True
    dispatched: bool = False
