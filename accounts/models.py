from pydantic import BaseModel


class Registration(BaseModel):
    """A chat principal linked to a provisioned Emby account."""

    id: int | None = None
    telegram_id: int
    username: str
    admin: bool = False
    emby_user_id: str | None = None


class RegistrationCheckResponse(BaseModel):
    """Response for the admin registration check."""

    registered: bool
    database_username: str | None = None
    admin: bool = False
