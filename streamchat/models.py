from __future__ import annotations

from datetime import datetime
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError


class Credentials(BaseModel):
    model_config = ConfigDict(frozen=True)

    access_token: str = Field(min_length=1)
    refresh_token: str = Field(min_length=1)


class Identity(BaseModel):
    """Minimal profile of the signed-in user.

    Anything besides ``id`` and ``username`` is kept as-is in the extras.
    """

    model_config = ConfigDict(extra="allow", frozen=True, coerce_numbers_to_str=True)

    id: str = Field(min_length=1)
    username: str = Field(min_length=1)

    @classmethod
    def from_payload(cls, data: Any) -> Optional["Identity"]:
        """Return an Identity, or None when ``data`` lacks a usable id/username."""
        if not isinstance(data, dict):
            return None
        try:
            return cls.model_validate(data)
        except ValidationError:
            return None

    @classmethod
    def from_json(cls, raw: Optional[str]) -> Optional["Identity"]:
        if not raw:
            return None
        try:
            return cls.model_validate_json(raw)
        except ValidationError:
            return None


class ChatMessage(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    content: str
    sender: Literal["user", "ai"]
    timestamp: Optional[datetime] = None

    @property
    def role(self) -> str:
        return "user" if self.sender == "user" else "assistant"


class LoginResponse(BaseModel):
    access_token: str = Field(min_length=1)
    refresh_token: str = Field(min_length=1)
    user_info: dict[str, Any]


class RefreshResponse(BaseModel):
    access_token: str = Field(min_length=1)
    refresh_token: Optional[str] = None
