import pytest
from pydantic import ValidationError

from communityhub.api import schemas


def test_security_headers_and_cors(client):
    response = client.get("/healthz", headers={"Origin": "http://localhost:3000"})

    assert response.status_code == 200
    assert response.json()["success"] is True
    assert response.headers["X-Frame-Options"] == "DENY"
    assert response.headers["X-Content-Type-Options"] == "nosniff"
    assert response.headers["Cache-Control"] == "no-store"
    assert response.headers["Content-Security-Policy"].startswith("default-src")
    assert "Strict-Transport-Security" not in response.headers
    assert response.headers["access-control-allow-origin"] == "http://localhost:3000"
    assert response.headers["access-control-allow-credentials"] == "true"


def test_unknown_origin_not_allowed(client):
    response = client.get("/healthz", headers={"Origin": "https://evil.example"})
    assert "access-control-allow-origin" not in response.headers


def test_client_request_id_is_echoed(client):
    response = client.get("/healthz", headers={"X-Request-ID": "req-abc"})
    assert response.headers["X-Request-ID"] == "req-abc"

    too_long = client.get("/healthz", headers={"X-Request-ID": "x" * 200})
    assert too_long.headers["X-Request-ID"] != "x" * 200


def test_signup_request_normalizes_fields():
    req = schemas.SignupRequest(
        email=" User@Example.com ", fullname="  Jo \u200b Doe ", password="longenough1"
    )
    assert req.email == "user@example.com"
    assert req.fullname == "Jo Doe"


@pytest.mark.parametrize(
    "payload",
    [
        {"email": "invalid", "fullname": "Jo", "password": "longenough1"},
        {"email": "a@b", "fullname": "Jo", "password": "longenough1"},
        {"email": "a@b.com", "fullname": "J", "password": "longenough1"},
        {"email": "a@b.com", "fullname": "Jo", "password": "short"},
    ],
)
def test_signup_request_rejects(payload):
    with pytest.raises(ValidationError):
        schemas.SignupRequest(**payload)


def test_otp_must_be_six_digits():
    assert schemas.VerifyOtpRequest(email="a@b.com", otp=" 012345 ").otp == "012345"
    for bad in ("12345", "1234567", "abcdef"):
        with pytest.raises(ValidationError):
            schemas.VerifyOtpRequest(email="a@b.com", otp=bad)


def test_request_aliases():
    reset = schemas.ResetPasswordRequest(
        email="a@b.com", newPassword="longenough1", resetToken="ticket"
    )
    assert reset.new_password == "longenough1"
    assert reset.reset_token == "ticket"

    assert schemas.RefreshTokenBody(refreshToken="r").refresh_token == "r"
    assert schemas.RefreshTokenBody(refresh_token="r").refresh_token == "r"
    assert schemas.AssignRoleRequest(userId="u1", role="ADMIN").user_id == "u1"
    change = schemas.ChangePasswordRequest(currentPassword="old", newPassword="longenough1")
    assert change.current_password == "old"


def test_token_response_serializes_camel_case():
    user = schemas.UserOut(id="u1", email="a@b.com", fullname="Jo", role="USER")
    response = schemas.AuthTokensResponse(
        message="Login successful", user=user, access_token="a", refresh_token="r"
    )
    dumped = response.model_dump(by_alias=True)
    assert dumped["accessToken"] == "a"
    assert dumped["refreshToken"] == "r"
    assert dumped["success"] is True


def test_error_body_defaults_to_failure():
    body = schemas.ErrorBody(message="nope", code="forbidden")
    assert body.success is False
    assert body.model_dump(exclude_none=True) == {
        "success": False,
        "message": "nope",
        "code": "forbidden",
    }
