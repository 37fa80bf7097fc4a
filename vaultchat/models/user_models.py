from datetime import datetime
from typing import Annotated, Optional

from pydantic import BaseModel, ConfigDict, Field, PlainSerializer

from vaultchat.utils.timestamps import format_timestamp, utcnow

UNKNOWN_USER = "Unknown User"

Timestamp = Annotated[datetime, PlainSerializer(format_timestamp, return_type=str)]


def email_local_part(email: Optional[str]) -> str:
    return (email or "").split("@")[0]


class StoredModel(BaseModel):
    """Model persisted as a document; attribute names map to the stored camelCase fields."""

    model_config = ConfigDict(populate_by_name=True)

    def to_document(self) -> dict:
        return self.model_dump(by_alias=True, exclude_none=True)


class Principal(BaseModel):
    id: str
    display_name: Optional[str] = None
    email: Optional[str] = None


class DirectoryEntry(StoredModel):
    email: str
    searchable_email: str = Field(alias="searchableEmail")
    name: str
    searchable_name: str = Field(alias="searchableName")
    last_updated: Timestamp = Field(default_factory=utcnow, alias="lastUpdated")

    @classmethod
    def for_principal(cls, principal: Principal) -> "DirectoryEntry":
        email = principal.email or ""
        if principal.display_name:
            name = principal.display_name
        else:
            name = email_local_part(email) or "User"

        return cls(
            email=email,
            searchable_email=email.lower(),
            name=name,
            searchable_name=name.lower(),
        )


class UserProfile(BaseModel):
    id: str
    name: str
    email: str = ""

    @classmethod
    def from_document(cls, uid: str, data: dict) -> "UserProfile":
        email = data.get("email")
        email = email if isinstance(email, str) else ""
        name = data.get("name")

        if not isinstance(name, str):
            name = UNKNOWN_USER
        elif not name:
            name = email_local_part(email) or UNKNOWN_USER

        return cls(id=uid, name=name, email=email)
