"""Per-user token and authorisation-rejection tracking.

Every caller gets its own PersonalAccessTokenManager and
AuthorisationRequestManager, handed out by a CredentialRegistry and carried
through a request in a ResolutionContext. Nothing here is module-level state.
"""

from __future__ import annotations

import hashlib
import logging
import threading
from collections import OrderedDict
from collections.abc import Callable
from dataclasses import dataclass

import jwt

from devfactory.errors import AuthenticationRequired, BadRequest
from devfactory.models import ProviderType, Subject
from devfactory.oauth import authentication_required, detect_provider, normalize_ssh_url
from devfactory.providers.base import INVALID_CREDENTIALS_MESSAGE, ScmApiClient
from devfactory.scm_service import server_origin
from devfactory.token_store import TokenStore

logger = logging.getLogger(__name__)

ANONYMOUS = Subject(user_id="anonymous", user_name="anonymous")
DEFAULT_MAX_USERS = 1024

ApiClientLookup = Callable[[str], "ScmApiClient | None"]
TokenSource = Callable[[str, "str | None"], "str | None"]


def bearer_token(authorization: str | None) -> str | None:
    if not authorization:
        return None
    scheme, _, token = authorization.strip().partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def caller_token(scm_server_url: str, authorization: str | None) -> str | None:
    """Offer the caller's own bearer token as the token for *scm_server_url*."""
    return bearer_token(authorization)


class PersonalAccessTokenManager:
    """Tokens of one user, keyed by SCM server origin."""

    def __init__(
        self,
        store: TokenStore,
        user_id: str,
        api_clients: ApiClientLookup,
        token_source: TokenSource = caller_token,
    ):
        self.store = store
        self.user_id = user_id
        self.api_clients = api_clients
        self.token_source = token_source

    def _key(self, scm_server_url: str) -> str:
        return f"{self.user_id}|{scm_server_url.rstrip('/').lower()}"

    def _client(self, scm_server_url: str) -> ScmApiClient:
        client = self.api_clients(scm_server_url)
        if client is None:
            raise BadRequest(f"No SCM API client available for {scm_server_url}")
        return client

    @staticmethod
    def _is_valid(client: ScmApiClient, token: str) -> bool:
        try:
            return client.get_user(token) is not None
        except AuthenticationRequired:
            return False

    def get_token(self, scm_server_url: str) -> str | None:
        return self.store.load(self._key(scm_server_url))

    def has_token(self, scm_server_url: str) -> bool:
        return self.get_token(scm_server_url) is not None

    def get_and_store(self, scm_server_url: str, authorization: str | None = None) -> str:
        """Return a working token for *scm_server_url*, acquiring one if needed.

        Args:
            scm_server_url: Origin of the SCM server.
            authorization: The caller's Authorization header, handed to the
                token source.

        Raises:
            AuthenticationRequired: when no valid token can be obtained.
        """
        client = self._client(scm_server_url)
        key = self._key(scm_server_url)

        existing = self.store.load(key)
        if existing and self._is_valid(client, existing):
            return existing

        token = self.token_source(scm_server_url, authorization)
        if not token:
            logger.info("No token available for %s", scm_server_url)
            raise authentication_required(client.api_endpoint, client.provider)
        if not self._is_valid(client, token):
            raise authentication_required(
                client.api_endpoint, client.provider, INVALID_CREDENTIALS_MESSAGE
            )
        self.store.save(key, token)
        logger.info("Stored token for %s", scm_server_url)
        return token

    def force_refresh(self, scm_server_url: str, authorization: str | None = None) -> str:
        self.store.delete(self._key(scm_server_url))
        return self.get_and_store(scm_server_url, authorization)


class AuthorisationRequestManager:
    """Providers for which one user declined authorisation."""

    def __init__(self):
        self._rejected: set[str] = set()

    def is_stored(self, provider: str) -> bool:
        return provider in self._rejected

    def store(self, provider: str) -> None:
        self._rejected.add(provider)

    def remove(self, provider: str) -> None:
        self._rejected.discard(provider)

    def clear(self) -> None:
        self._rejected.clear()


@dataclass
class ResolutionContext:
    subject: Subject
    authorization: str | None
    tokens: PersonalAccessTokenManager
    rejections: AuthorisationRequestManager

    def authorization_for(self, url: str | None) -> str | None:
        """Authorization header to send to the SCM server hosting *url*.

        A token stored for that server wins over the caller's own header.
        """
        if url and detect_provider(url) is not ProviderType.GENERIC:
            token = self.tokens.get_token(server_origin(normalize_ssh_url(url.strip())))
            if token:
                return f"Bearer {token}"
        return self.authorization


def subject_from_authorization(authorization: str | None) -> Subject:
    """Derive a stable caller identity from the Authorization header.

    A JWT bearer token is identified by its ``sub`` claim, so a rotated token
    keeps the same identity. Opaque tokens are identified by a hash of the
    token itself. The signature is not checked here; the authentication
    layer in front of the API owns that.
    """
    token = bearer_token(authorization) or (authorization or "").strip()
    if not token:
        return ANONYMOUS
    try:
        claims = jwt.decode(token, options={"verify_signature": False})
    except jwt.InvalidTokenError:
        claims = {}
    sub = claims.get("sub") if isinstance(claims, dict) else None
    if sub:
        user_name = claims.get("preferred_username") or claims.get("name") or ""
        return Subject(user_id=str(sub), user_name=str(user_name), token=token)
    user_id = hashlib.sha256(token.encode()).hexdigest()[:16]
    return Subject(user_id=user_id, token=token)


class CredentialRegistry:
    """Hands out the credential trackers belonging to each caller.

    At most *max_users* callers are tracked; the least recently seen one is
    dropped first. Its stored tokens stay in the token store.
    """

    def __init__(
        self,
        store: TokenStore,
        api_clients: ApiClientLookup,
        token_source: TokenSource = caller_token,
        max_users: int = DEFAULT_MAX_USERS,
    ):
        self.store = store
        self.api_clients = api_clients
        self.token_source = token_source
        self.max_users = max(1, max_users)
        self._scopes: OrderedDict[str, tuple[PersonalAccessTokenManager, AuthorisationRequestManager]] = (
            OrderedDict()
        )
        # sync routes run on a threadpool
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._scopes)

    def _scope(self, subject: Subject) -> tuple[PersonalAccessTokenManager, AuthorisationRequestManager]:
        with self._lock:
            scope = self._scopes.get(subject.user_id)
            if scope is None:
                scope = (
                    PersonalAccessTokenManager(
                        self.store, subject.user_id, self.api_clients, self.token_source
                    ),
                    AuthorisationRequestManager(),
                )
                self._scopes[subject.user_id] = scope
                while len(self._scopes) > self.max_users:
                    evicted, _ = self._scopes.popitem(last=False)
                    logger.debug("Dropped credential scope of %s", evicted)
            else:
                self._scopes.move_to_end(subject.user_id)
            return scope

    def tokens_for(self, subject: Subject) -> PersonalAccessTokenManager:
        return self._scope(subject)[0]

    def rejections_for(self, subject: Subject) -> AuthorisationRequestManager:
        return self._scope(subject)[1]

    def context(self, authorization: str | None, subject: Subject | None = None) -> ResolutionContext:
        subject = subject or subject_from_authorization(authorization)
        tokens, rejections = self._scope(subject)
        return ResolutionContext(
            subject=subject,
            authorization=authorization,
            tokens=tokens,
            rejections=rejections,
        )
