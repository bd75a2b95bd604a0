"""Session bridge: HTTP login -> socket identity.

Browsers cannot read the HTTP-only session cookie, so the client first calls
``GET /api/auth/token`` and then presents that access token in the Socket.IO
handshake (``auth: {token, userId, userRole, collegeId}``). The token is
treated as a one-shot capability: once it expires the connection is refused
and the client has to go back through the HTTP flow.

Role and tenant are always re-derived from the stored profile. The declared
``userRole``/``collegeId`` hints are kept only for UI purposes.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional
from urllib.parse import parse_qs

import jwt

from carelink.models.user import UserRole
from carelink.realtime.errors import AuthenticationRejected, CollaboratorFailure
from carelink.services.chat_store import ChatStore
from carelink.services.jwt import decode_token

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Identity:
    id: str
    role: UserRole
    tenant_id: Optional[str]
    hints: Dict[str, Any] = field(default_factory=dict, compare=False)

    @property
    def is_student(self) -> bool:
        return self.role == UserRole.student

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.admin

    @property
    def public_id(self) -> str:
        """Identity shown in community presence events."""
        return "anonymous" if self.is_student else self.id

    def to_session(self) -> Dict[str, Any]:
        return {
            "user_id": self.id,
            "role": self.role.value,
            "tenant_id": self.tenant_id,
            "hints": dict(self.hints),
        }

    @classmethod
    def from_session(cls, session: Dict[str, Any]) -> "Identity":
        return cls(
            id=session["user_id"],
            role=UserRole(session["role"]),
            tenant_id=session.get("tenant_id"),
            hints=session.get("hints") or {},
        )


def _scope(environ: Dict[str, Any]) -> Any:
    if isinstance(environ, dict) and "asgi.scope" in environ:
        inner = environ.get("asgi.scope")
        if isinstance(inner, dict):
            return inner
    return environ


def _header(environ: Dict[str, Any], name: str) -> Optional[str]:
    scope = _scope(environ)
    if not isinstance(scope, dict):
        return None
    # ASGI: list of (bytes, bytes); WSGI: HTTP_<NAME>
    for key, value in scope.get("headers") or []:
        if isinstance(key, (bytes, bytearray)) and key.decode(errors="ignore").lower() == name:
            return value.decode(errors="ignore")
    wsgi_value = scope.get("HTTP_" + name.upper().replace("-", "_"))
    return wsgi_value if isinstance(wsgi_value, str) else None


def extract_token(environ: Dict[str, Any], auth: Any | None) -> Optional[str]:
    """Find the access token in the handshake.

    Order: ``auth.token``, ``Authorization: Bearer``, then ``?token=``.
    """
    if isinstance(auth, dict):
        auth_token = auth.get("token")
        if isinstance(auth_token, str) and auth_token:
            return auth_token

    authorization = _header(environ, "authorization")
    if authorization and authorization.lower().startswith("bearer "):
        bearer = authorization[7:].strip()
        if bearer:
            return bearer

    scope = _scope(environ)
    query_string: str | bytes = ""
    if isinstance(scope, dict) and "query_string" in scope:
        query_string = scope.get("query_string", b"")
    elif isinstance(scope, dict) and "QUERY_STRING" in scope:
        query_string = scope.get("QUERY_STRING", "")
    if isinstance(query_string, (bytes, bytearray)):
        query_string = query_string.decode(errors="ignore")

    token = parse_qs(str(query_string)).get("token", [None])[0]
    if isinstance(token, str) and token:
        return token
    return None


def _declared_hints(auth: Any | None) -> Dict[str, Any]:
    if not isinstance(auth, dict):
        return {}
    hints = {
        "user_id": auth.get("userId") or auth.get("user_id"),
        "role": auth.get("userRole") or auth.get("role"),
        "college_id": auth.get("collegeId") or auth.get("college_id"),
    }
    return {k: str(v) for k, v in hints.items() if v}


class SessionBridge:
    """Turns a handshake into an :class:`Identity` or refuses it.

    Performs reads only.
    """

    def __init__(self, store: ChatStore, decoder: Callable[[str], dict] = decode_token) -> None:
        self._store = store
        self._decode = decoder

    async def authenticate(self, environ: Dict[str, Any], auth: Any | None = None) -> Identity:
        token = extract_token(environ, auth)
        if not token:
            raise AuthenticationRejected("Authentication required - missing access token")

        hints = _declared_hints(auth)
        if not hints.get("user_id"):
            raise AuthenticationRejected("Authentication required - missing userId")

        try:
            claims = self._decode(token)
        except jwt.ExpiredSignatureError as exc:
            raise AuthenticationRejected("jwt_expired") from exc
        except jwt.InvalidTokenError as exc:
            raise AuthenticationRejected("Invalid access token") from exc

        subject = claims.get("sub")
        if not subject:
            raise AuthenticationRejected("Invalid access token")
        if str(subject) != hints["user_id"]:
            logger.warning("[socket] handshake identity mismatch sub=%s declared=%s", subject, hints["user_id"])
            raise AuthenticationRejected("Identity mismatch")

        try:
            profile = await self._store.get_profile(str(subject))
        except CollaboratorFailure as exc:
            raise AuthenticationRejected("Connection failed") from exc
        if profile is None or not profile.is_active:
            raise AuthenticationRejected("Account inactive or missing")

        return Identity(id=profile.id, role=profile.role, tenant_id=profile.college_id, hints=hints)

