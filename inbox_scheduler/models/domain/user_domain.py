from datetime import datetime

from pydantic import BaseModel, ConfigDict


class User(BaseModel):
    """A registered user on whose behalf exchanges are managed."""

    model_config = ConfigDict(extra="allow")

    id: str
    email: str
    display_name: str | None = None
    timezone: str = "UTC"
    signature: str | None = None
    is_active: bool = True
    created_at: datetime | None = None

    @property
    def name(self) -> str:
        return self.display_name or self.email.split("@")[0]
