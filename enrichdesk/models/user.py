from datetime import datetime

from beanie import Document, Indexed
from pydantic import Field

ROLE_USER = "user"
ROLE_ADMIN = "admin"


class User(Document):
    google_sub: Indexed(str, unique=True)
    email: str
    name: str = ""
    picture: str | None = None
    phone: str | None = None
    role: str = ROLE_USER  # "user" | "admin"
    session_version: int = 0
    last_login_at: datetime | None = None
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    class Settings:
        name = "users"
        indexes = [[("role", 1)]]

    @property
    def is_admin(self) -> bool:
        return self.role == ROLE_ADMIN
