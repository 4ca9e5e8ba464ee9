import pytest

from portal.models import Identity, TwoFactorStatus
from portal.utils.string_helpers import denormalize_keys, normalize_keys, to_snake_case
from portal.utils.validators import (
    normalize_email,
    validate_email,
    validate_login_fields,
    validate_name,
    validate_password,
    validate_totp_code,
)


@pytest.mark.parametrize(
    "email, password",
    [("", "pw"), ("   ", "pw"), ("a@b.com", ""), ("", "")],
)
def test_login_fields_require_both_values(email, password):
    result = validate_login_fields(email, password)
    assert not result.is_valid
    assert result.error_message == "Please fill in all fields"


def test_login_fields_leave_format_to_server():
    assert validate_login_fields("not-an-email", "x").is_valid


@pytest.mark.parametrize("code", ["123456", "000000"])
def test_totp_accepts_six_ascii_digits(code):
    assert validate_totp_code(code).is_valid


@pytest.mark.parametrize(
    "code",
    ["12345", "1234567", "12345a", " 123456", "123456\n", "١٢٣٤٥٦", ""],
)
def test_totp_rejects_everything_else(code):
    result = validate_totp_code(code)
    assert not result.is_valid
    assert result.error_message == "Please enter a valid 6-digit code"


def test_normalize_email():
    assert normalize_email("  Ada@Example.COM ") == "ada@example.com"


def test_validate_email():
    assert validate_email("ada@example.com").is_valid
    assert not validate_email("ada@").is_valid
    assert validate_email("").error_message == "Email address is required."


@pytest.mark.parametrize(
    "password, fragment",
    [
        ("Sh0rt!", "at least 8"),
        ("lowercase1!", "uppercase"),
        ("UPPERCASE1!", "lowercase"),
        ("NoDigits!!", "digit"),
        ("NoSpecial1", "special"),
    ],
)
def test_password_policy(password, fragment):
    result = validate_password(password)
    assert not result.is_valid
    assert fragment in result.error_message


def test_password_policy_accepts_strong_password():
    assert validate_password("Str0ng!pass").is_valid


def test_validate_name_rejects_control_characters():
    assert validate_name("Ada", "First name").is_valid
    assert validate_name("  ", "First name").error_message == "First name is required."
    assert not validate_name("Ada\nEvil", "First name").is_valid


def test_snake_case_conversion():
    assert to_snake_case("firstName") == "first_name"
    assert to_snake_case("requires2FA") == "requires_2fa"
    assert to_snake_case("manualEntryKey") == "manual_entry_key"


def test_normalize_keys_is_recursive_and_prefers_non_null():
    payload = {
        "user": {"firstName": "Ada", "first_name": None},
        "backupCodes": [{"codeValue": "x"}],
    }
    assert normalize_keys(payload) == {
        "user": {"first_name": "Ada"},
        "backup_codes": [{"code_value": "x"}],
    }


def test_normalize_keys_prefers_camel_case_spelling():
    assert normalize_keys({"account_verified": False, "accountVerified": True}) == {"account_verified": True}
    assert normalize_keys({"accountVerified": True, "account_verified": False}) == {"account_verified": True}
    assert normalize_keys({"account_verified": False, "accountVerified": None}) == {"account_verified": False}


def test_snake_case_keeps_digit_runs_together():
    assert to_snake_case("requires2FA") == "requires_2fa"
    assert to_snake_case("requires_2fa") == "requires_2fa"
    assert to_snake_case("sha256Hash") == "sha_256_hash"
    assert to_snake_case("HTTPStatus") == "http_status"


def test_denormalize_keys_for_outbound_bodies():
    assert denormalize_keys({"first_name": "Ada", "phone": "1"}) == {
        "firstName": "Ada",
        "phone": "1",
    }


def test_identity_accepts_both_spellings():
    camel = Identity.from_payload({"id": 3, "email": "a@b.com", "firstName": "Ada", "accountVerified": None})
    assert camel.id == "3"
    assert camel.first_name == "Ada"
    assert camel.account_verified is False
    assert camel.is_admin is None


def test_identity_role_drives_admin_flag():
    assert Identity(id="1", email="a@b.com", role="admin").is_admin is True
    assert Identity(id="1", email="a@b.com", role="client").is_admin is False


def test_two_factor_status_tolerates_nulls():
    status = TwoFactorStatus.model_validate(
        {"enabled": None, "setup_initiated": None, "backup_codes_remaining": None}
    )
    assert status.enabled is False
    assert status.backup_codes_remaining == 0
