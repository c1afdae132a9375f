from enum import IntEnum

from pydantic import BaseModel, computed_field


class RequestStatus(IntEnum):
    """Lifecycle of a media request. Codes match the persisted integers."""

    SUBMITTED = 0
    ARCHIVED = 1
    CANCELLED = 2
    INVALID = 3

    @property
    def is_terminal(self) -> bool:
        return self != RequestStatus.SUBMITTED

    @property
    def label(self) -> str:
        return STATUS_LABELS[self]

    @classmethod
    def parse(cls, value: "RequestStatus | int | str") -> "RequestStatus":
        """Accept a status member, its integer code, or its case-insensitive name."""
        if isinstance(value, RequestStatus):
            return value
        if isinstance(value, bool):
            raise ValueError(f"Invalid status: {value!r}")
        if isinstance(value, int):
            return cls(value)
        text = str(value).strip()
        if text.isdigit():
            return cls(int(text))
        try:
            return cls[text.upper()]
        except KeyError:
            raise ValueError(f"Invalid status: {value!r}") from None


STATUS_LABELS = {
    RequestStatus.SUBMITTED: "已提交",
    RequestStatus.ARCHIVED: "已入库",
    RequestStatus.CANCELLED: "被取消",
    RequestStatus.INVALID: "不符合规范",
}


class MediaRequest(BaseModel):
    """One user's request for one catalog item."""

    id: int
    source: str
    media_id: str
    request_user: int
    status: RequestStatus = RequestStatus.SUBMITTED
    created_at: str
    updated_at: str


class MediaMetadata(BaseModel):
    """Fetched title/summary/poster owned by a media request."""

    media_request_id: int
    title: str
    summary: str | None = None
    poster: str | None = None
    created_at: str | None = None
    updated_at: str | None = None


class RequestView(BaseModel):
    """A media request joined with its metadata, as listed on the admin surface."""

    id: int
    source: str
    media_id: str
    request_user: int
    status: RequestStatus
    created_at: str
    updated_at: str
    title: str | None = None
    summary: str | None = None
    poster: str | None = None

    @computed_field  # type: ignore[prop-decorator]
    @property
    def status_name(self) -> str:
        return self.status.name.lower()

    @property
    def display_title(self) -> str:
        return self.title or f"{self.source} {self.media_id}"


class StatusUpdateRequest(BaseModel):
    """Body of POST /admin/requests/status."""

    request_id: int
    new_status: int | str


class StatusUpdateResponse(BaseModel):
    success: bool
    message: str


class BatchFetchReport(BaseModel):
    """Outcome of fetching metadata for every request that lacks it."""

    total_processed: int = 0
    successful: int = 0
    failed: int = 0
    errors: list[str] = []
