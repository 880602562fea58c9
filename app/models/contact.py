from datetime import datetime
from uuid import UUID

from pydantic import BaseModel


class Contact(BaseModel):
    id: UUID
    email: str  # always lowercase
    phone: str | None = None  # E.164, e.g. +15551234567
    phone_hash: str | None = None  # sha256 hex of phone
    first_name: str | None = None
    last_name: str | None = None
    created_at: datetime | None = None
