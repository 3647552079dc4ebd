from __future__ import annotations

import logging
from typing import Any, Optional

from .api_client import ApiClient
from .auth_client import IDENTITY_PATH
from .errors import AuthError, InvalidSessionError
from .models import Identity
from .session import MAX_AUTH_RETRIES, SessionManager

logger = logging.getLogger(__name__)


def _is_identity_path(path: str) -> bool:
    return path.split("?", 1)[0].rstrip("/").endswith(IDENTITY_PATH)


class AuthenticatedRequest:
    """Runs API calls with the session's bearer token.

    A 401 triggers one refresh and one retry of the same request. If the
    refresh fails, or the retry is rejected again, the session is dropped
    and AuthError is raised.
    """

    def __init__(self, api: ApiClient, session: SessionManager):
        self.api = api
        self.session = session

    async def execute(
        self,
        path: str,
        method: str = "GET",
        json: Optional[dict] = None,
        params: Optional[dict] = None,
    ) -> Any:
        access = await self.session.get_valid_access_token()
        retries = 0
        while True:
            r = await self.api.request(method, path, access, params=params, json=json)
            if r.status_code != 401:
                break
            if not access:
                raise AuthError("Not authenticated")
            if retries >= MAX_AUTH_RETRIES:
                logger.warning("%s %s rejected again after token refresh", method, path)
                await self.session.logout()
                raise AuthError()
            retries += 1
            try:
                creds = await self.session.refresh_if_possible()
            except AuthError as e:
                raise AuthError() from e
            access = creds.access_token

        data = self.api.decode(r)

        if _is_identity_path(path) and Identity.from_payload(data) is None:
            await self.session.logout()
            raise InvalidSessionError()
        return data
