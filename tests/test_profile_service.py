import json

import httpx
import pytest

from portal.auth import SessionStore
from portal.errors import (
    NoSessionError,
    RequestError,
    SessionExpiredError,
    UpdateError,
    ValidationError,
)
from portal.models import Session
from portal.services.backend_api import BackendApi
from portal.services.profile_service import ProfileService
from portal.services.request_gate import RequestGate


@pytest.mark.asyncio
async def test_operations_require_a_session(profile, backend):
    with pytest.raises(NoSessionError):
        await profile.refresh_identity()
    with pytest.raises(NoSessionError):
        await profile.update_profile(first_name="Grace")
    with pytest.raises(NoSessionError):
        await profile.request_account_verification()
    with pytest.raises(NoSessionError):
        await profile.has_admin_capability()
    assert backend.calls == []


@pytest.mark.asyncio
async def test_refresh_fills_identity_of_hydrated_session(
    client, backend, storage, logger, clock, signed_in, user_payload,
):
    restarted = SessionStore(storage=storage, logger=logger, max_age_seconds=3600, clock=clock)
    restarted.hydrate()
    gate = RequestGate(client=client, store=restarted, logger=logger)
    service = ProfileService(
        api=BackendApi(gate=gate, client=client, logger=logger),
        store=restarted,
        logger=logger,
    )
    backend.add("GET", "/user/profile", 200, {**user_payload, "firstName": "Ada", "accountVerified": True})

    identity = await service.refresh_identity()

    assert identity.first_name == "Ada"
    assert identity.account_verified is True
    assert restarted.current().user == identity
    assert restarted.current().token == signed_in.token
    assert backend.calls[0].headers["Authorization"] == f"Bearer {signed_in.token}"


@pytest.mark.asyncio
async def test_refresh_accepts_wrapped_user(profile, backend, store, signed_in):
    backend.add("GET", "/user/profile", 200, {"user": {"id": 7, "email": "a@b.com", "last_name": "Lovelace"}})

    identity = await profile.refresh_identity()

    assert identity.last_name == "Lovelace"


@pytest.mark.asyncio
async def test_update_profile_writes_through(profile, backend, store, signed_in, user_payload):
    backend.add(
        "PUT", "/user/profile", 200,
        {"message": "Profile updated successfully", "user": {**user_payload, "first_name": "Grace", "phone": "555"}},
    )

    identity = await profile.update_profile(first_name=" Grace ", phone="555")

    assert identity.first_name == "Grace"
    assert store.current().user.phone == "555"
    assert store.current().token == signed_in.token
    assert json.loads(backend.calls_to("/user/profile")[0].content) == {
        "firstName": "Grace",
        "phone": "555",
    }


@pytest.mark.asyncio
async def test_update_profile_rejection_is_verbatim(profile, backend, store, signed_in):
    backend.add("PUT", "/user/profile", 400, {"errors": [{"msg": "Phone number is invalid"}]})

    with pytest.raises(UpdateError, match="Phone number is invalid"):
        await profile.update_profile(phone="x")
    assert store.current() == signed_in


@pytest.mark.asyncio
async def test_update_profile_local_validation(profile, backend, signed_in):
    with pytest.raises(ValidationError):
        await profile.update_profile(email="x@y.com")
    with pytest.raises(ValidationError):
        await profile.update_profile(first_name="   ")
    with pytest.raises(ValidationError):
        await profile.update_profile()
    assert backend.calls == []


@pytest.mark.asyncio
async def test_request_account_verification(profile, backend, signed_in):
    backend.add("POST", "/user/request-account-verification", 200, {"message": "Verification request submitted"})

    assert await profile.request_account_verification() == "Verification request submitted"


@pytest.mark.asyncio
async def test_request_account_verification_rejection(profile, backend, signed_in):
    backend.add("POST", "/user/request-account-verification", 400, {"error": "Account already verified"})

    with pytest.raises(RequestError, match="Account already verified"):
        await profile.request_account_verification()


@pytest.mark.asyncio
async def test_verify_email_refreshes_profile(profile, backend, store, signed_in, user_payload):
    backend.add("POST", "/user/verify-email", 200, {"message": "Email verified successfully"})
    backend.add("GET", "/user/profile", 200, {**user_payload, "email_verified": True})

    message = await profile.verify_email(" abc ")

    assert message == "Email verified successfully"
    assert json.loads(backend.calls_to("/user/verify-email")[0].content) == {"token": "abc"}
    assert len(backend.calls_to("/user/profile")) == 1


@pytest.mark.asyncio
async def test_admin_capability_prefers_explicit_role(profile, backend, store, signed_in):
    store.patch_identity({"role": "admin"})

    assert await profile.has_admin_capability() is True
    assert backend.calls == []


@pytest.mark.asyncio
async def test_admin_probe_success(profile, backend, signed_in):
    backend.add("GET", "/admin/users", 200, [])
    assert await profile.has_admin_capability() is True


@pytest.mark.asyncio
async def test_admin_probe_degrades_to_false(profile, backend, store, signed_in):
    backend.add("GET", "/admin/users", 403, {"error": "Admin access required"})

    assert await profile.has_admin_capability() is False
    assert store.current() == signed_in


@pytest.mark.asyncio
async def test_admin_probe_degrades_on_transport_failure(profile, backend, signed_in):
    backend.add_error("GET", "/admin/users", httpx.ConnectError("refused"))
    assert await profile.has_admin_capability() is False


@pytest.mark.asyncio
async def test_admin_probe_does_not_hide_expired_session(profile, backend, store, signed_in):
    backend.add("GET", "/admin/users", 401, {"error": "Access token required"})

    with pytest.raises(SessionExpiredError):
        await profile.has_admin_capability()
    assert store.current() is None


@pytest.mark.asyncio
async def test_profile_answer_after_logout_leaves_store_empty(profile, backend, store, signed_in, user_payload):
    async def answer_after_logout(request):
        store.clear(reason="logout")
        return httpx.Response(200, json=user_payload)

    backend.add_handler("GET", "/user/profile", answer_after_logout)

    identity = await profile.refresh_identity()

    assert identity.email == "a@b.com"
    assert store.current() is None


@pytest.mark.asyncio
async def test_update_answer_after_relogin_does_not_touch_new_session(
    profile, backend, store, signed_in, user_payload,
):
    newer = Session(token="session-token-2")

    async def answer_after_relogin(request):
        store.commit(newer)
        return httpx.Response(200, json={"user": {**user_payload, "first_name": "Grace"}})

    backend.add_handler("PUT", "/user/profile", answer_after_relogin)

    identity = await profile.update_profile(first_name="Grace")

    assert identity.first_name == "Grace"
    assert store.current() == newer
