"""Auth collaborator: stored session and the session-change signal.

Token issuance and refresh happen elsewhere. This module only keeps the
current token/profile in a ``KeyValueStore`` and lets interested components
subscribe to session changes:

    unsubscribe = auth.subscribe(orchestrator.on_session_event)
    ...
    await auth.invalidate("backend answered 401")
    unsubscribe()
"""

import hashlib
import json
from dataclasses import dataclass, field
from typing import Callable, Literal, Optional

from jose import JWTError, jwt

from libs.auth.models import TokenProfile, build_token_profile
from libs.common.datetime_utils import utc_now
from libs.common.kv_store import KeyValueStore
from libs.common.logging import get_logger

logger = get_logger(__name__)

TOKEN_KEY = "authToken"
PROFILE_KEY = "authProfile"

SessionAction = Literal["login", "logout", "invalidated"]


@dataclass(frozen=True)
class SessionEvent:
    action: SessionAction
    reason: Optional[str] = None
    occurred_at: object = field(default_factory=utc_now)


SessionListener = Callable[[SessionEvent], None]


def parse_token_claims(token: Optional[str]) -> Optional[dict]:
    """Read JWT claims without verifying; verification is the backend's job."""
    if not token:
        return None
    try:
        return jwt.get_unverified_claims(token)
    except JWTError:
        return None


class AuthSession:
    """Session state owned by the auth collaborator, with an observer list."""

    def __init__(self, store: KeyValueStore):
        self._store = store
        self._listeners: list[SessionListener] = []
        self._token: Optional[str] = None
        self._profile: Optional[TokenProfile] = None
        # sha256 of tokens the backend refused; never adopted again
        self._rejected: set[str] = set()

    # ------------------------------------------------------------------
    # Observer interface
    # ------------------------------------------------------------------

    def subscribe(self, listener: SessionListener) -> Callable[[], None]:
        """Register a listener; returns the matching unsubscribe callable."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(self, event: SessionEvent) -> None:
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                logger.exception("Session listener failed for %s", event.action)

    # ------------------------------------------------------------------
    # Session state
    # ------------------------------------------------------------------

    @property
    def token(self) -> Optional[str]:
        return self._token

    @property
    def profile(self) -> Optional[TokenProfile]:
        return self._profile

    @property
    def is_authenticated(self) -> bool:
        return bool(self._token)

    async def load(self) -> None:
        """Restore token/profile persisted by a previous visit."""
        self._token = await self._store.get(TOKEN_KEY)
        stored_profile = await self._store.get(PROFILE_KEY)
        profile_data = None
        if stored_profile:
            try:
                profile_data = json.loads(stored_profile)
            except ValueError:
                logger.warning("Discarding unreadable stored profile")
        self._profile = build_token_profile(parse_token_claims(self._token), profile_data)

    async def set_session(self, token: str, profile: Optional[dict] = None) -> None:
        self._token = token
        await self._store.set(TOKEN_KEY, token)
        if profile is not None:
            await self._store.set(PROFILE_KEY, json.dumps(profile, ensure_ascii=False))
        self._profile = build_token_profile(parse_token_claims(token), profile)
        self._notify(SessionEvent(action="login"))

    async def use_token(self, token: Optional[str]) -> None:
        """Adopt the token presented by the caller; notifies only on change.

        A token the backend already rejected is ignored, so presenting it
        again does not count as a new login.
        """
        if token == self._token:
            return
        if token and _fingerprint(token) in self._rejected:
            logger.info("Ignoring previously rejected token")
            return
        if token:
            await self.set_session(token)
        else:
            await self.clear_session()

    async def clear_session(self) -> None:
        self._token = None
        self._profile = None
        await self._store.remove(TOKEN_KEY)
        await self._store.remove(PROFILE_KEY)
        self._notify(SessionEvent(action="logout"))

    async def invalidate(self, reason: Optional[str] = None) -> None:
        """Broadcast that the current session can no longer be trusted."""
        logger.warning("Session invalidated: %s", reason or "unknown reason")
        if self._token:
            self._rejected.add(_fingerprint(self._token))
        self._token = None
        await self._store.remove(TOKEN_KEY)
        self._notify(SessionEvent(action="invalidated", reason=reason))


def _fingerprint(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()
