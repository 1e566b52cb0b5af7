"""Tests for RequestValidator and the request schemas."""

import pytest

from auth.exceptions import PayloadValidationError
from auth.schemas import (
    PASSWORD_COMPLEXITY_MESSAGE,
    LoginRequest,
    RefreshRequest,
    RegisterRequest,
    ResetPasswordRequest,
    VerifyEmailRequest,
    check_password_complexity,
)
from auth.validation import RequestValidator


@pytest.fixture
def validator():
    return RequestValidator()


def fields_of(exc_info) -> list[str]:
    return [e.field for e in exc_info.value.errors]


class TestPasswordComplexity:
    """At least 8 characters with lower, upper, digit and symbol."""

    def test_strong_password_passes(self):
        assert check_password_complexity("Str0ng!Pass") == "Str0ng!Pass"

    @pytest.mark.parametrize("password", [
        "Sh0rt!",        # too short
        "str0ng!pass",   # no upper
        "STR0NG!PASS",   # no lower
        "Strong!Pass",   # no digit
        "Str0ngPass1",   # no symbol
        "Strong!Pass\u0663",  # non-ASCII digit only
    ])
    def test_weak_passwords_rejected(self, password):
        with pytest.raises(ValueError, match="at least 8 characters"):
            check_password_complexity(password)


class TestRequestValidator:
    """Boundary validation before any service call."""

    def test_valid_register_payload(self, validator):
        body = validator.validate(
            RegisterRequest, {"email": "alice@example.com", "password": "Str0ng!Pass"}
        )
        assert body.email == "alice@example.com"

    def test_invalid_email(self, validator):
        with pytest.raises(PayloadValidationError) as exc_info:
            validator.validate(RegisterRequest, {"email": "nope", "password": "Str0ng!Pass"})
        assert fields_of(exc_info) == ["email"]

    def test_weak_password_reports_complexity_message(self, validator):
        with pytest.raises(PayloadValidationError) as exc_info:
            validator.validate(RegisterRequest, {"email": "alice@example.com", "password": "weak"})
        assert fields_of(exc_info) == ["password"]
        assert PASSWORD_COMPLEXITY_MESSAGE in exc_info.value.errors[0].reason

    def test_multiple_failures_reported_together(self, validator):
        with pytest.raises(PayloadValidationError) as exc_info:
            validator.validate(RegisterRequest, {})
        assert sorted(fields_of(exc_info)) == ["email", "password"]

    def test_non_object_payload(self, validator):
        with pytest.raises(PayloadValidationError) as exc_info:
            validator.validate(LoginRequest, ["alice@example.com"])
        assert fields_of(exc_info) == ["body"]

    def test_missing_body(self, validator):
        with pytest.raises(PayloadValidationError):
            validator.validate(LoginRequest, None)

    def test_login_password_min_length(self, validator):
        """Login doesn't re-check complexity, only a minimum length."""
        body = validator.validate(LoginRequest, {"email": "a@example.com", "password": "lowercase"})
        assert body.password == "lowercase"

        with pytest.raises(PayloadValidationError):
            validator.validate(LoginRequest, {"email": "a@example.com", "password": "short"})

    @pytest.mark.parametrize("schema,field", [
        (RefreshRequest, "refresh_token"),
        (VerifyEmailRequest, "token"),
    ])
    def test_short_tokens_rejected(self, validator, schema, field):
        with pytest.raises(PayloadValidationError) as exc_info:
            validator.validate(schema, {field: "abc"})
        assert fields_of(exc_info) == [field]

    def test_reset_password_checks_complexity(self, validator):
        with pytest.raises(PayloadValidationError) as exc_info:
            validator.validate(ResetPasswordRequest, {"token": "t" * 43, "password": "password"})
        assert fields_of(exc_info) == ["password"]

    def test_unknown_fields_ignored(self, validator):
        body = validator.validate(
            RefreshRequest, {"refresh_token": "r" * 43, "extra": "ignored"}
        )
        assert body.refresh_token == "r" * 43
