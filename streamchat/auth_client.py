from __future__ import annotations

import logging
from typing import Any, Dict

from pydantic import ValidationError

from .api_client import ApiClient
from .errors import AuthError, DecodeError
from .models import LoginResponse, RefreshResponse

logger = logging.getLogger(__name__)

LOGIN_PATH = "/auth/login"
REFRESH_PATH = "/auth/refresh"
IDENTITY_PATH = "/auth/me"


class AuthClient:
    """Raw calls to the auth endpoints. Holds no state."""

    def __init__(self, api: ApiClient):
        self.api = api

    async def login(self, username: str, password: str) -> LoginResponse:
        r = await self.api.request("POST", LOGIN_PATH, json={"username": username, "password": password})
        data = self.api.decode(r)
        try:
            return LoginResponse.model_validate(data)
        except ValidationError as e:
            raise DecodeError("Malformed login response") from e

    async def refresh(self, refresh_token: str) -> RefreshResponse:
        r = await self.api.request("POST", REFRESH_PATH, json={"refresh_token": refresh_token})
        if not r.is_success:
            logger.warning("token refresh rejected: status=%s", r.status_code)
            raise AuthError("Token refresh failed")
        try:
            return RefreshResponse.model_validate(self.api.decode(r))
        except (ValidationError, DecodeError) as e:
            raise AuthError("Token refresh failed") from e

    async def me(self, access: str) -> Dict[str, Any]:
        r = await self.api.request("GET", IDENTITY_PATH, access)
        data = self.api.decode(r)
        if not isinstance(data, dict):
            return {}
        return data
