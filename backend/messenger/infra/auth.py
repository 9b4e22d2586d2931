"""Authentication helpers for FastAPI endpoints and socket handshakes.

Token issuance belongs to the auth service; this module only verifies access
JWTs (HS256, settings.secret_key) and resolves the caller identity.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Protocol, Tuple

from fastapi import Depends, Header, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from messenger.domain.chat.models import canonical_user_id
from messenger.infra import jwt as jwt_helper
from messenger.settings import settings


@dataclass(slots=True)
class AuthenticatedUser:
	id: str
	handle: Optional[str] = None
	display_name: Optional[str] = None
	roles: Tuple[str, ...] = ()
	session_id: Optional[str] = None

	def has_role(self, role: str) -> bool:
		return role in self.roles


@dataclass(slots=True)
class AuthVerification:
	user_id: Optional[str]
	valid: bool
	error: Optional[str] = None


class AuthVerifier(Protocol):
	async def verify(self, token: str) -> AuthVerification:
		...


_bearer_scheme = HTTPBearer(auto_error=False)


def _roles_from_claim(claim: object) -> Tuple[str, ...]:
	if isinstance(claim, (list, tuple)):
		return tuple(str(r).strip() for r in claim if str(r).strip())
	if isinstance(claim, str):
		return tuple(part.strip() for part in claim.split(",") if part.strip())
	return ()


def verify_access_jwt(token: str) -> AuthenticatedUser:
	"""Decode and validate an access JWT and return an AuthenticatedUser."""
	try:
		payload = jwt_helper.decode_access(token)
	except Exception:
		# Normalise all decode failures to invalid_token for the API surface
		raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="invalid_token")

	sub = canonical_user_id(payload.get("sub") or "")
	if not sub:
		raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="invalid_token")

	handle = payload.get("handle")
	display_name = payload.get("name") or payload.get("display_name")
	session_id = payload.get("sid")
	return AuthenticatedUser(
		id=sub,
		handle=str(handle) if handle is not None else None,
		display_name=str(display_name) if display_name is not None else None,
		roles=_roles_from_claim(payload.get("roles") or payload.get("role")),
		session_id=str(session_id).strip() if session_id is not None else None,
	)


class JwtAuthVerifier:
	"""AuthVerifier backed by the shared access-token secret."""

	async def verify(self, token: str) -> AuthVerification:
		token = (token or "").strip()
		if not token:
			return AuthVerification(user_id=None, valid=False, error="missing_token")
		try:
			user = verify_access_jwt(token)
		except HTTPException as exc:
			return AuthVerification(user_id=None, valid=False, error=str(exc.detail))
		return AuthVerification(user_id=user.id, valid=True)


async def get_current_user(
	x_user_id: Optional[str] = Header(default=None, alias="X-User-Id"),
	x_user_roles: Optional[str] = Header(default=None, alias="X-User-Roles"),
	credentials: Optional[HTTPAuthorizationCredentials] = Depends(_bearer_scheme),
) -> AuthenticatedUser:
	"""Resolve the authenticated user.

	In development we allow a simple X-User-Id header. In all other environments
	headers are ignored and a valid Bearer JWT is required.
	"""
	if credentials and credentials.scheme.lower() == "bearer":
		return verify_access_jwt(credentials.credentials)

	if settings.is_dev() and x_user_id and x_user_id.strip():
		roles = tuple(filter(None, (x_user_roles or "").split(","))) if x_user_roles else ()
		return AuthenticatedUser(id=canonical_user_id(x_user_id), roles=roles)

	raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="invalid_token")
