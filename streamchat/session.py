from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Callable, Optional, Set, Union

from .auth_client import AuthClient
from .errors import AuthError, ChatClientError, HttpError, InvalidSessionError
from .models import Credentials, Identity
from .token_store import (
    ACCESS_TOKEN_KEY,
    IDENTITY_KEY,
    REFRESH_TOKEN_KEY,
    SESSION_KEYS,
    TokenStore,
)

logger = logging.getLogger(__name__)

# a request rejected with 401 is retried at most this many times after a refresh
MAX_AUTH_RETRIES = 1


@dataclass
class Anonymous:
    pass


@dataclass
class Authenticated:
    identity: Identity
    fetched_at: Optional[float] = None  # None: taken from cache, never verified


@dataclass
class Refreshing:
    pending: "asyncio.Task[Credentials]"
    identity: Optional[Identity] = None


SessionState = Union[Anonymous, Authenticated, Refreshing]


class SessionManager:
    """Owns the credentials and the authentication state.

    Nothing else writes to the token store. Tokens are also kept in memory,
    so an unavailable store only costs persistence across restarts.
    """

    def __init__(
        self,
        store: TokenStore,
        auth: AuthClient,
        identity_ttl_sec: float = 300.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.store = store
        self.auth = auth
        self.identity_ttl = identity_ttl_sec
        self._clock = clock
        self.state: SessionState = Anonymous()
        self._credentials: Optional[Credentials] = None
        # bumped by login and logout; late results from an older session are dropped
        self._epoch = 0
        self._revalidation: Optional[asyncio.Task] = None
        self._background: Set[asyncio.Task] = set()

    # -- state ---------------------------------------------------------------

    @property
    def is_authenticated(self) -> bool:
        return self._credentials is not None

    @property
    def access_token(self) -> Optional[str]:
        return self._credentials.access_token if self._credentials else None

    @property
    def identity(self) -> Optional[Identity]:
        """Cached identity without waiting on the network.

        A stale cache is returned as-is and revalidated in the background.
        """
        state = self.state
        if isinstance(state, Authenticated):
            if not self._is_fresh(state):
                self._schedule_revalidation()
            return state.identity
        if isinstance(state, Refreshing):
            return state.identity
        return None

    def _is_fresh(self, state: Authenticated) -> bool:
        if state.fetched_at is None:
            return False
        return self._clock() - state.fetched_at < self.identity_ttl

    async def restore(self) -> SessionState:
        """Load the session persisted by a previous run."""
        access = await self.store.get(ACCESS_TOKEN_KEY)
        refresh = await self.store.get(REFRESH_TOKEN_KEY)
        raw_identity = await self.store.get(IDENTITY_KEY)

        if not access or not refresh:
            if access or refresh or raw_identity:
                logger.warning("incomplete session in token store, discarding")
                await self.logout()
            self.state = Anonymous()
            return self.state

        self._credentials = Credentials(access_token=access, refresh_token=refresh)

        if raw_identity is None:
            # tokens without a profile: the first get_current_identity() asks the server
            self.state = Anonymous()
            return self.state

        identity = Identity.from_json(raw_identity)
        if identity is None:
            logger.warning("cached identity is invalid, forcing re-login")
            await self.logout()
            return self.state

        self.state = Authenticated(identity)
        self._schedule_revalidation()
        return self.state

    # -- operations ----------------------------------------------------------

    async def login(self, username: str, password: str) -> Identity:
        resp = await self.auth.login(username, password)
        identity = Identity.from_payload(resp.user_info)
        if identity is None:
            raise InvalidSessionError()

        creds = Credentials(access_token=resp.access_token, refresh_token=resp.refresh_token)
        self._epoch += 1
        await self._save(creds, identity)
        self.state = Authenticated(identity, self._clock())
        logger.info("logged in as %s", identity.username)
        return identity

    async def logout(self) -> None:
        self._epoch += 1
        self._credentials = None
        self.state = Anonymous()
        try:
            await self.store.clear(SESSION_KEYS)
        except Exception:
            logger.exception("failed to clear token store on logout")

    async def get_valid_access_token(self) -> Optional[str]:
        if isinstance(self.state, Refreshing):
            try:
                await self.refresh_if_possible()
            except AuthError:
                return None
        return self.access_token

    async def get_current_identity(self) -> Optional[Identity]:
        if isinstance(self.state, Refreshing):
            await self.refresh_if_possible()

        state = self.state
        if isinstance(state, Authenticated) and self._is_fresh(state):
            return state.identity
        if self._credentials is None:
            return None

        epoch = self._epoch
        try:
            identity = await self._fetch_identity()
        except InvalidSessionError:
            logger.error("invalid user data received from identity endpoint")
            if self._epoch == epoch:
                await self.logout()
            raise
        except ChatClientError as e:
            logger.warning("failed to get current user: %s", e)
            if self._epoch == epoch:
                await self.logout()
            raise AuthError(f"User session invalid: {e}") from e

        if self._epoch != epoch:
            # a login or logout happened meanwhile; its state wins
            logger.info("session changed during identity check, dropping result")
            state = self.state
            return state.identity if isinstance(state, Authenticated) else None

        await self.store.set(IDENTITY_KEY, identity.model_dump_json())
        self.state = Authenticated(identity, self._clock())
        return identity

    async def _fetch_identity(self) -> Identity:
        attempt = 0
        while True:
            creds = self._credentials
            if creds is None:
                raise AuthError("Not authenticated")
            try:
                return await self._whoami(creds.access_token)
            except HttpError as e:
                if e.status != 401 or attempt >= MAX_AUTH_RETRIES:
                    raise
            attempt += 1
            await self.refresh_if_possible()

    async def _whoami(self, access: str) -> Identity:
        identity = Identity.from_payload(await self.auth.me(access))
        if identity is None:
            raise InvalidSessionError()
        return identity

    async def refresh_if_possible(self) -> Credentials:
        """Refresh the access token; concurrent callers share one request."""
        state = self.state
        if isinstance(state, Refreshing):
            return await asyncio.shield(state.pending)

        identity = state.identity if isinstance(state, Authenticated) else None
        task = asyncio.ensure_future(self._refresh(identity))
        self.state = Refreshing(task, identity)
        return await asyncio.shield(task)

    async def _refresh(self, identity: Optional[Identity]) -> Credentials:
        epoch = self._epoch
        creds = self._credentials
        try:
            if creds is None:
                raise AuthError("No refresh token available")
            resp = await self.auth.refresh(creds.refresh_token)
            new = Credentials(
                access_token=resp.access_token,
                refresh_token=resp.refresh_token or creds.refresh_token,
            )
            fetched = None
            if identity is None:
                fetched = await self._whoami(new.access_token)
            if self._epoch != epoch:
                raise AuthError("Session ended while refreshing")
            await self._save(new, fetched)
        except ChatClientError as e:
            logger.warning("token refresh failed: %s", e)
            await self._drop_session(epoch)
            if isinstance(e, AuthError):
                raise
            raise AuthError("Token refresh failed") from e
        except BaseException:
            await self._drop_session(epoch)
            raise

        self.state = Authenticated(fetched or identity, self._clock())
        return new

    async def _drop_session(self, epoch: int) -> None:
        # only the session this refresh started from is ended
        if self._epoch == epoch:
            await self.logout()

    async def _save(self, creds: Credentials, identity: Optional[Identity] = None) -> None:
        self._credentials = creds
        await self.store.set(ACCESS_TOKEN_KEY, creds.access_token)
        await self.store.set(REFRESH_TOKEN_KEY, creds.refresh_token)
        if identity is not None:
            await self.store.set(IDENTITY_KEY, identity.model_dump_json())

    # -- background ----------------------------------------------------------

    def _schedule_revalidation(self) -> None:
        if self._revalidation is not None and not self._revalidation.done():
            return
        try:
            task = asyncio.get_running_loop().create_task(self._revalidate())
        except RuntimeError:
            return
        self._revalidation = task
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _revalidate(self) -> None:
        try:
            if isinstance(self.state, Authenticated):
                # force a round trip even if the cache looks fresh
                self.state = Authenticated(self.state.identity)
            await self.get_current_identity()
        except ChatClientError as e:
            logger.warning("background token validation failed: %s", e)

    async def close(self) -> None:
        for task in list(self._background):
            task.cancel()
        if self._background:
            await asyncio.gather(*self._background, return_exceptions=True)
