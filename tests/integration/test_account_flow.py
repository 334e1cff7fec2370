"""
Integration tests for the account lifecycle through the API.

Drives the real application routes and services end to end, reading
verification codes from the console email log. Runs against the
in-memory store and against PostgreSQL (skipped when unreachable).
"""

import logging
import re
from base64 import b64encode
from collections.abc import Generator

import pytest
from fastapi.testclient import TestClient

from src.adapters.repository.memory import MemoryStore
from src.adapters.smtp.console import ConsoleEmailSender
from src.api.main import app
from src.config.settings import get_settings
from src.domain.accounts import AccountService
from src.domain.otp import OtpService
from src.domain.ports import Store

pytestmark = pytest.mark.integration

PASSWORD = "correct-horse-42"
ADMIN_EMAIL = "admin@example.com"


@pytest.fixture(params=["memory", "postgres"])
def flow_store(request: pytest.FixtureRequest) -> Store:
    if request.param == "postgres":
        return request.getfixturevalue("postgres_store")
    return MemoryStore()


@pytest.fixture
def client(flow_store: Store, monkeypatch: pytest.MonkeyPatch) -> Generator[TestClient, None, None]:
    """Test client bound to the flow store, with cheap bcrypt costs."""
    monkeypatch.setenv("BCRYPT_COST", "4")
    monkeypatch.setenv("OTP_BCRYPT_COST", "4")
    get_settings.cache_clear()
    app.state.store = flow_store
    # No context manager: the lifespan (pool, migrations) does not run
    yield TestClient(app)
    del app.state.store
    get_settings.cache_clear()


@pytest.fixture
def admin_auth(flow_store: Store) -> dict:
    service = AccountService(
        store=flow_store,
        otp_service=OtpService(store=flow_store),
        email_sender=ConsoleEmailSender(),
        password_rounds=4,
    )
    service.create_admin(ADMIN_EMAIL, PASSWORD)
    return basic_auth_header(ADMIN_EMAIL, PASSWORD)


def basic_auth_header(email: str, password: str) -> dict:
    """Create HTTP BASIC AUTH header for testing."""
    credentials = f"{email}:{password}"
    encoded = b64encode(credentials.encode()).decode()
    return {"Authorization": f"Basic {encoded}"}


def last_code(caplog: pytest.LogCaptureFixture, email: str) -> str:
    """Latest code logged by the console email sender for email."""
    codes = re.findall(rf"\[OTP\] Email: {re.escape(email)} .*? Code: (\d+)", caplog.text)
    assert codes, f"No code logged for {email}"
    return codes[-1]


class TestCandidateFlow:
    """Register, verify and log in as a candidate."""

    def test_full_candidate_flow(self, client: TestClient, caplog: pytest.LogCaptureFixture) -> None:
        email = "casey@example.com"
        with caplog.at_level(logging.INFO):
            response = client.post(
                "/v1/auth/register/candidate",
                json={"email": "Casey@Example.com", "password": PASSWORD, "full_name": "Casey"},
            )
            assert response.status_code == 201
            assert response.json()["email"] == email
            assert response.json()["verification_sent"] is True

            response = client.post(
                "/v1/auth/verify-email", json={"email": email, "code": last_code(caplog, email)}
            )

        assert response.status_code == 200
        assert response.json()["status"] == "ACTIVE"
        assert "[WELCOME] Email: casey@example.com Name: Casey" in caplog.text

        response = client.post("/v1/auth/login", json={"email": email, "password": PASSWORD})
        assert response.status_code == 200
        assert response.json()["redirect"] == "/candidate/dashboard"

    def test_duplicate_registration(self, client: TestClient) -> None:
        body = {"email": "dup@example.com", "password": PASSWORD, "full_name": "Dup"}
        assert client.post("/v1/auth/register/candidate", json=body).status_code == 201

        response = client.post("/v1/auth/register/candidate", json={**body, "email": "DUP@example.com"})

        assert response.status_code == 409

    def test_wrong_code_then_resend(self, client: TestClient, caplog: pytest.LogCaptureFixture) -> None:
        email = "retry@example.com"
        with caplog.at_level(logging.INFO):
            client.post(
                "/v1/auth/register/candidate",
                json={"email": email, "password": PASSWORD, "full_name": "Retry"},
            )
            code = last_code(caplog, email)
            wrong = "".join("1" if c == "0" else "0" for c in code)

            response = client.post("/v1/auth/verify-email", json={"email": email, "code": wrong})
            assert response.status_code == 400
            assert "4 attempt(s) remaining" in response.json()["detail"]

            response = client.post("/v1/auth/resend-otp", json={"email": email})
            assert response.status_code == 200
            new_code = last_code(caplog, email)

        response = client.post("/v1/auth/verify-email", json={"email": email, "code": new_code})
        assert response.status_code == 200

        response = client.post("/v1/auth/resend-otp", json={"email": email})
        assert response.status_code == 409


class TestPasswordResetFlow:
    """Forgot password, then reset with the emailed code."""

    def test_reset_and_login_with_new_password(
        self, client: TestClient, caplog: pytest.LogCaptureFixture
    ) -> None:
        email = "forgetful@example.com"
        with caplog.at_level(logging.INFO):
            client.post(
                "/v1/auth/register/candidate",
                json={"email": email, "password": PASSWORD, "full_name": "Forgetful"},
            )
            client.post("/v1/auth/verify-email", json={"email": email, "code": last_code(caplog, email)})

            response = client.post("/v1/auth/forgot-password", json={"email": email})
            assert response.status_code == 200
            assert "Reset your password" in caplog.text
            code = last_code(caplog, email)

        response = client.post(
            "/v1/auth/reset-password",
            json={"email": email, "code": code, "new_password": "a-brand-new-secret"},
        )
        assert response.status_code == 200

        assert client.post("/v1/auth/login", json={"email": email, "password": PASSWORD}).status_code == 401
        response = client.post("/v1/auth/login", json={"email": email, "password": "a-brand-new-secret"})
        assert response.status_code == 200

    def test_unknown_email_gets_same_answer(self, client: TestClient) -> None:
        response = client.post("/v1/auth/forgot-password", json={"email": "nobody@example.com"})
        assert response.status_code == 200
        assert response.json()["message"].startswith("If the email is registered")


class TestEmployerFlow:
    """Employer registration through approval and edit review."""

    def test_full_employer_flow(
        self, client: TestClient, admin_auth: dict, caplog: pytest.LogCaptureFixture
    ) -> None:
        email = "erin@example.com"
        auth = basic_auth_header(email, PASSWORD)
        with caplog.at_level(logging.INFO):
            response = client.post(
                "/v1/auth/register/employer",
                json={"email": email, "password": PASSWORD, "full_name": "Erin", "company_name": "Acme"},
            )
            assert response.status_code == 201
            response = client.post(
                "/v1/auth/verify-email", json={"email": email, "code": last_code(caplog, email)}
            )
        assert response.json()["status"] == "PENDING_PROFILE_COMPLETION"

        response = client.post("/v1/auth/login", json={"email": email, "password": PASSWORD})
        assert response.json()["redirect"] == "/employer/complete-profile"

        response = client.put(
            "/v1/employer/profile",
            json={"description": "We build anvils.", "logo_url": "https://cdn.example.com/acme.png"},
            headers=auth,
        )
        assert response.status_code == 200
        assert response.json()["account_status"] == "PENDING_APPROVAL"
        profile_id = response.json()["id"]

        response = client.get(f"/v1/admin/employer-profiles/{profile_id}/review", headers=admin_auth)
        assert response.json()["target"] == "EMPLOYER_PROFILE"

        with caplog.at_level(logging.INFO):
            response = client.post(
                f"/v1/admin/employer-profiles/{profile_id}/approve", json={}, headers=admin_auth
            )
        assert response.status_code == 200
        assert response.json()["account_status"] == "ACTIVE"
        assert "Company profile approved" in caplog.text

        response = client.patch(
            "/v1/employer/profile",
            json={"company_name": "Acme Anvils", "work_title": "Head of Talent"},
            headers=auth,
        )
        assert response.status_code == 200
        body = response.json()
        assert body["company_name"] == "Acme"
        assert body["work_title"] == "Head of Talent"
        assert body["staged_fields"] == ["company_name"]
        assert body["profile_status"] == "PENDING_EDIT_APPROVAL"

        response = client.post(
            f"/v1/admin/employer-profiles/{profile_id}/approve", json={"note": "ok"}, headers=admin_auth
        )
        assert response.json()["target"] == "EMPLOYER_PROFILE_EDIT"
        assert response.json()["profile_status"] == "APPROVED"

        response = client.get(f"/v1/admin/employer-profiles/{profile_id}/history", headers=admin_auth)
        assert [entry["target_type"] for entry in response.json()] == [
            "EMPLOYER_PROFILE",
            "EMPLOYER_PROFILE_EDIT",
        ]

    def test_employer_cannot_moderate(
        self, client: TestClient, admin_auth: dict, caplog: pytest.LogCaptureFixture
    ) -> None:
        email = "sneaky@example.com"
        with caplog.at_level(logging.INFO):
            client.post(
                "/v1/auth/register/employer",
                json={"email": email, "password": PASSWORD, "full_name": "Sam", "company_name": "Sneaky"},
            )
            client.post("/v1/auth/verify-email", json={"email": email, "code": last_code(caplog, email)})
        auth = basic_auth_header(email, PASSWORD)
        profile = client.put(
            "/v1/employer/profile",
            json={"description": "x", "logo_url": "https://example.com/logo.png"},
            headers=auth,
        ).json()

        response = client.post(f"/v1/admin/employer-profiles/{profile['id']}/approve", json={}, headers=auth)

        assert response.status_code == 403


class TestBanFlow:
    def test_banned_account_cannot_log_in(
        self, client: TestClient, admin_auth: dict, caplog: pytest.LogCaptureFixture
    ) -> None:
        email = "banned@example.com"
        with caplog.at_level(logging.INFO):
            account_id = client.post(
                "/v1/auth/register/candidate",
                json={"email": email, "password": PASSWORD, "full_name": "Banned"},
            ).json()["account_id"]

        response = client.post(f"/v1/admin/accounts/{account_id}/ban", headers=admin_auth)
        assert response.json()["status"] == "BANNED"

        response = client.post("/v1/auth/login", json={"email": email, "password": PASSWORD})
        assert response.status_code == 403

        response = client.post(f"/v1/admin/accounts/{account_id}/unban", headers=admin_auth)
        assert response.json()["status"] == "ACTIVE"
        assert client.post("/v1/auth/login", json={"email": email, "password": PASSWORD}).status_code == 200


class TestEmailChangeFlow:
    def test_move_to_new_address(self, client: TestClient, caplog: pytest.LogCaptureFixture) -> None:
        email = "mover@example.com"
        with caplog.at_level(logging.INFO):
            client.post(
                "/v1/auth/register/candidate",
                json={"email": email, "password": PASSWORD, "full_name": "Mover"},
            )
            client.post("/v1/auth/verify-email", json={"email": email, "code": last_code(caplog, email)})

            response = client.post("/v1/account/email/change-code", headers=basic_auth_header(email, PASSWORD))
            assert response.status_code == 200
            assert "Confirm your new email address" in caplog.text
            code = last_code(caplog, email)

        response = client.put(
            "/v1/account/email",
            json={"new_email": "Moved@Example.com", "code": code},
            headers=basic_auth_header(email, PASSWORD),
        )
        assert response.status_code == 200
        assert response.json()["email"] == "moved@example.com"

        assert client.post("/v1/auth/login", json={"email": email, "password": PASSWORD}).status_code == 401
        response = client.post("/v1/auth/login", json={"email": "moved@example.com", "password": PASSWORD})
        assert response.status_code == 200
