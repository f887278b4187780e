"""Caller identity as handed over by the authorization layer."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Mapping

from .errors import ForbiddenError

ANONYMOUS_USER_ID = "anonymous"


@dataclass(frozen=True, slots=True)
class Caller:
    user_id: str
    is_admin: bool = False


def require_admin(caller: Caller | None) -> Caller:
    if caller is None or not caller.is_admin:
        raise ForbiddenError("Admin access required")
    return caller


def caller_from_authorization(header_value: str | None, admin_tokens: Mapping[str, str]) -> Caller:
    """Map `Authorization: Bearer <token>` to a caller; unknown tokens are non-admin."""
    raw = (header_value or "").strip()
    scheme, _, token = raw.partition(" ")
    token = token.strip()
    if scheme.lower() != "bearer" or not token:
        return Caller(user_id=ANONYMOUS_USER_ID, is_admin=False)
    user_id = admin_tokens.get(token)
    if user_id is None:
        return Caller(user_id=ANONYMOUS_USER_ID, is_admin=False)
    return Caller(user_id=user_id, is_admin=True)
