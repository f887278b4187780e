import pytest

from src.jobsync.core.auth import Caller, caller_from_authorization, require_admin
from src.jobsync.core.errors import ForbiddenError

TOKENS = {"admin-secret": "alice"}


def test_bearer_admin_token_maps_to_admin_caller():
    caller = caller_from_authorization("Bearer admin-secret", TOKENS)
    assert caller == Caller(user_id="alice", is_admin=True)


@pytest.mark.parametrize("header", [None, "", "Bearer", "Bearer wrong", "Basic admin-secret"])
def test_other_headers_are_anonymous(header):
    caller = caller_from_authorization(header, TOKENS)
    assert caller.is_admin is False


def test_require_admin():
    assert require_admin(Caller("alice", True)).user_id == "alice"
    with pytest.raises(ForbiddenError, match="Admin access required") as exc_info:
        require_admin(Caller("bob", False))
    assert exc_info.value.http_status == 403
    with pytest.raises(ForbiddenError):
        require_admin(None)
