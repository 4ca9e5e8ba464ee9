import asyncio
import json

import httpx
import pytest

from portal.errors import (
    FlowStateError,
    NoSessionError,
    SessionExpiredError,
    SetupError,
    TwoFactorStatusUnknownError,
    ValidationError,
    VerificationError,
)
from portal.models import (
    AwaitingDisableConfirmation,
    AwaitingSetupConfirmation,
    Enabled,
    Inactive,
    SetupRequested,
    StatusUnknown,
)

SETUP_BODY = {
    "message": "2FA setup initiated. Scan the QR code with your authenticator app.",
    "qrCode": "data:image/png;base64,AAAA",
    "manualEntryKey": "JBSWY3DPEHPK3PXP",
    "backupCodes": None,
}


async def _inactive(two_factor, backend):
    backend.add("GET", "/2fa/status", 200, {"enabled": False, "setup_initiated": False, "backup_codes_remaining": 0})
    state = await two_factor.refresh_status()
    assert isinstance(state, Inactive)
    return state


async def _enabled(two_factor, backend):
    backend.add("GET", "/2fa/status", 200, {"enabled": True, "backup_codes_remaining": 10})
    state = await two_factor.refresh_status()
    assert isinstance(state, Enabled)
    return state


async def _awaiting_setup(two_factor, backend):
    await _inactive(two_factor, backend)
    backend.add("POST", "/2fa/setup", 200, SETUP_BODY)
    state = await two_factor.request_setup()
    assert isinstance(state, AwaitingSetupConfirmation)
    return state


@pytest.mark.asyncio
async def test_every_operation_requires_a_session(two_factor, backend):
    with pytest.raises(NoSessionError):
        await two_factor.refresh_status()
    with pytest.raises(NoSessionError):
        await two_factor.request_setup()
    with pytest.raises(NoSessionError):
        await two_factor.confirm_setup("123456")
    with pytest.raises(NoSessionError):
        two_factor.begin_disable()
    with pytest.raises(NoSessionError):
        await two_factor.confirm_disable("123456")
    with pytest.raises(NoSessionError):
        await two_factor.generate_backup_codes("123456")
    assert backend.calls == []


@pytest.mark.asyncio
async def test_status_failure_leaves_status_unknown(two_factor, backend, signed_in):
    backend.add("GET", "/2fa/status", 500, {"error": "Internal server error"})

    state = await two_factor.refresh_status()

    assert isinstance(state, StatusUnknown)
    assert isinstance(state.error, TwoFactorStatusUnknownError)
    assert state.error.message == "Internal server error"
    assert two_factor.status is None


@pytest.mark.asyncio
async def test_setup_only_from_inactive(two_factor, backend, signed_in):
    with pytest.raises(FlowStateError):
        await two_factor.request_setup()
    await _enabled(two_factor, backend)
    with pytest.raises(FlowStateError):
        await two_factor.request_setup()


@pytest.mark.asyncio
async def test_setup_yields_enrollment_material(two_factor, backend, signed_in):
    state = await _awaiting_setup(two_factor, backend)

    assert state.material.qr_code == SETUP_BODY["qrCode"]
    assert state.material.manual_entry_key == SETUP_BODY["manualEntryKey"]
    assert "JBSWY3DPEHPK3PXP" not in repr(state.material)
    assert two_factor.status.enabled is False


@pytest.mark.asyncio
async def test_setup_failure_keeps_status(two_factor, backend, signed_in):
    await _inactive(two_factor, backend)
    backend.add("POST", "/2fa/setup", 400, {"error": "2FA is already enabled"})

    state = await two_factor.request_setup()

    assert isinstance(state, Inactive)
    assert isinstance(state.error, SetupError)
    assert state.error.message == "2FA is already enabled"
    assert two_factor.status.enabled is False


@pytest.mark.asyncio
async def test_wrong_setup_code_keeps_material(two_factor, backend, signed_in):
    awaiting = await _awaiting_setup(two_factor, backend)
    backend.add("POST", "/2fa/verify-setup", 400, {"error": "Invalid verification code"})

    state = await two_factor.confirm_setup("000000")

    assert isinstance(state, AwaitingSetupConfirmation)
    assert state.material == awaiting.material
    assert isinstance(state.error, VerificationError)
    assert state.error.message == "Invalid verification code"
    assert two_factor.status.enabled is False
    assert len(backend.calls_to("/2fa/setup")) == 1


@pytest.mark.asyncio
async def test_malformed_setup_code_is_local(two_factor, backend, signed_in):
    await _awaiting_setup(two_factor, backend)

    state = await two_factor.confirm_setup("12ab56")

    assert isinstance(state.error, ValidationError)
    assert backend.calls_to("/2fa/verify-setup") == []


@pytest.mark.asyncio
async def test_confirmed_setup_enables(two_factor, backend, signed_in, store):
    await _awaiting_setup(two_factor, backend)
    backend.add("POST", "/2fa/verify-setup", 200, {"message": "2FA has been successfully enabled"})

    state = await two_factor.confirm_setup("123456")

    assert isinstance(state, Enabled)
    assert two_factor.status.enabled is True
    assert json.loads(backend.calls_to("/2fa/verify-setup")[0].content) == {"token": "123456"}
    assert store.current() == signed_in


@pytest.mark.asyncio
async def test_cancel_discards_material(two_factor, backend, signed_in):
    await _awaiting_setup(two_factor, backend)

    state = two_factor.cancel()

    assert isinstance(state, Inactive)
    with pytest.raises(FlowStateError):
        await two_factor.confirm_setup("123456")


@pytest.mark.asyncio
async def test_cancel_before_setup_resolves_drops_late_material(two_factor, backend, signed_in):
    await _inactive(two_factor, backend)
    release = asyncio.Event()

    async def slow_setup(request):
        await release.wait()
        return httpx.Response(200, json=SETUP_BODY)

    backend.add_handler("POST", "/2fa/setup", slow_setup)

    pending = asyncio.create_task(two_factor.request_setup())
    await asyncio.sleep(0)
    await asyncio.sleep(0)
    assert isinstance(two_factor.state, SetupRequested)

    two_factor.cancel()
    release.set()
    state = await pending

    assert isinstance(state, Inactive)
    assert isinstance(two_factor.state, Inactive)
    assert not two_factor.busy


@pytest.mark.asyncio
async def test_disable_flow(two_factor, backend, signed_in):
    await _enabled(two_factor, backend)
    assert isinstance(two_factor.begin_disable(), AwaitingDisableConfirmation)

    backend.add("POST", "/2fa/disable", 400, {"error": "Invalid verification code"})
    backend.add("POST", "/2fa/disable", 200, {"message": "2FA has been successfully disabled"})

    wrong = await two_factor.confirm_disable("000000")
    assert isinstance(wrong, AwaitingDisableConfirmation)
    assert isinstance(wrong.error, VerificationError)
    assert two_factor.status.enabled is True

    right = await two_factor.confirm_disable("123456")
    assert isinstance(right, Inactive)
    assert two_factor.status.enabled is False


@pytest.mark.asyncio
async def test_cancel_disable_returns_to_enabled(two_factor, backend, signed_in):
    await _enabled(two_factor, backend)
    two_factor.begin_disable()

    assert isinstance(two_factor.cancel(), Enabled)


@pytest.mark.asyncio
async def test_begin_disable_needs_enabled(two_factor, backend, signed_in):
    await _inactive(two_factor, backend)
    with pytest.raises(FlowStateError):
        two_factor.begin_disable()


@pytest.mark.asyncio
async def test_generate_backup_codes(two_factor, backend, signed_in):
    await _enabled(two_factor, backend)
    codes = ["A1B2C3D4", "E5F6G7H8"]
    backend.add(
        "POST", "/2fa/generate-backup-codes", 200,
        {"backupCodes": codes, "warning": "Store these backup codes securely."},
    )

    state = await two_factor.generate_backup_codes("123456")

    assert isinstance(state, Enabled)
    assert state.backup_codes == tuple(codes)
    assert "A1B2C3D4" not in repr(state)
    assert two_factor.status.backup_codes_remaining == 2
    assert two_factor.cancel().backup_codes is None


@pytest.mark.asyncio
async def test_backup_code_rejection(two_factor, backend, signed_in):
    await _enabled(two_factor, backend)
    backend.add("POST", "/2fa/generate-backup-codes", 400, {"error": "Invalid verification code"})

    state = await two_factor.generate_backup_codes("000000")

    assert isinstance(state, Enabled)
    assert isinstance(state.error, VerificationError)
    assert state.backup_codes is None


@pytest.mark.asyncio
async def test_expired_session_propagates_and_resets(two_factor, backend, signed_in, store):
    await _inactive(two_factor, backend)
    backend.add("POST", "/2fa/setup", 401, {"error": "Access token required"})

    with pytest.raises(SessionExpiredError):
        await two_factor.request_setup()

    assert isinstance(two_factor.state, StatusUnknown)
    assert two_factor.status is None
    assert store.current() is None


@pytest.mark.asyncio
async def test_enable_confirmed_after_cancel_still_updates_status(two_factor, backend, signed_in):
    await _awaiting_setup(two_factor, backend)
    release = asyncio.Event()

    async def slow_confirm(request):
        await release.wait()
        return httpx.Response(200, json={"message": "2FA has been successfully enabled"})

    backend.add_handler("POST", "/2fa/verify-setup", slow_confirm)

    pending = asyncio.create_task(two_factor.confirm_setup("123456"))
    await asyncio.sleep(0)
    await asyncio.sleep(0)
    assert isinstance(two_factor.cancel(), Inactive)

    release.set()
    await pending

    assert two_factor.status.enabled is True
    assert isinstance(two_factor.state, Enabled)
    assert not two_factor.busy


@pytest.mark.asyncio
async def test_disable_confirmed_after_cancel_still_updates_status(two_factor, backend, signed_in):
    await _enabled(two_factor, backend)
    two_factor.begin_disable()
    release = asyncio.Event()

    async def slow_disable(request):
        await release.wait()
        return httpx.Response(200, json={"message": "2FA has been successfully disabled"})

    backend.add_handler("POST", "/2fa/disable", slow_disable)

    pending = asyncio.create_task(two_factor.confirm_disable("123456"))
    await asyncio.sleep(0)
    await asyncio.sleep(0)
    assert isinstance(two_factor.cancel(), Enabled)

    release.set()
    await pending

    assert two_factor.status.enabled is False
    assert isinstance(two_factor.state, Inactive)
    with pytest.raises(FlowStateError):
        two_factor.begin_disable()


@pytest.mark.asyncio
async def test_rejected_code_after_cancel_changes_nothing(two_factor, backend, signed_in):
    await _awaiting_setup(two_factor, backend)
    release = asyncio.Event()

    async def slow_reject(request):
        await release.wait()
        return httpx.Response(400, json={"error": "Invalid verification code"})

    backend.add_handler("POST", "/2fa/verify-setup", slow_reject)

    pending = asyncio.create_task(two_factor.confirm_setup("000000"))
    await asyncio.sleep(0)
    await asyncio.sleep(0)
    two_factor.cancel()
    release.set()
    await pending

    assert two_factor.status.enabled is False
    assert isinstance(two_factor.state, Inactive)
    assert two_factor.state.error is None
