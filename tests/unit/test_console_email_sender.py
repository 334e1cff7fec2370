"""
Unit tests for ConsoleEmailSender adapter.

Tests verify the console email sender implements EmailSender protocol
and logs each message in the expected format.
"""

import logging
from concurrent.futures import ThreadPoolExecutor

import pytest

from src.adapters.smtp.console import OTP_SUBJECTS, ConsoleEmailSender
from src.domain.ports import OtpPurpose


class TestConsoleEmailSenderProtocol:
    """Tests for EmailSender protocol compliance."""

    def test_implements_email_sender_protocol(self) -> None:
        """ConsoleEmailSender has every EmailSender method."""
        from src.domain.ports import EmailSender

        sender = ConsoleEmailSender()
        for name in ("send_otp_email", "send_welcome_email", "send_profile_decision_email"):
            assert callable(getattr(sender, name))

        def accepts_email_sender(s: EmailSender) -> None:
            pass

        accepts_email_sender(sender)

    def test_no_explicit_inheritance(self) -> None:
        """ConsoleEmailSender uses structural subtyping, not inheritance."""
        bases = ConsoleEmailSender.__bases__
        assert bases == (object,), f"Expected only object as base, got {bases}"

    def test_every_purpose_has_subject(self) -> None:
        assert set(OTP_SUBJECTS) == set(OtpPurpose)


class TestSendOtpEmail:
    """Tests for send_otp_email method."""

    def test_logs_at_info(self, caplog: pytest.LogCaptureFixture) -> None:
        sender = ConsoleEmailSender()

        with caplog.at_level(logging.INFO):
            sender.send_otp_email("test@example.com", "123456", OtpPurpose.EMAIL_VERIFICATION, 5)

        assert len(caplog.records) == 1
        assert caplog.records[0].levelno == logging.INFO

    def test_format(self, caplog: pytest.LogCaptureFixture) -> None:
        """Log format: [OTP] Email: ... Subject: ... Code: ... Valid: N min"""
        sender = ConsoleEmailSender()

        with caplog.at_level(logging.INFO):
            sender.send_otp_email("user@example.com", "012345", OtpPurpose.PASSWORD_RESET, 10)

        assert "[OTP]" in caplog.text
        assert "Email: user@example.com" in caplog.text
        assert "Subject: Reset your password" in caplog.text
        assert "Code: 012345" in caplog.text
        assert "Valid: 10 min" in caplog.text

    def test_returns_none(self) -> None:
        """Method returns None (fire-and-forget)."""
        sender = ConsoleEmailSender()
        assert sender.send_otp_email("test@example.com", "123456", OtpPurpose.EMAIL_CHANGE, 5) is None


class TestSendWelcomeEmail:
    """Tests for send_welcome_email method."""

    def test_format(self, caplog: pytest.LogCaptureFixture) -> None:
        sender = ConsoleEmailSender()

        with caplog.at_level(logging.INFO):
            sender.send_welcome_email("casey@example.com", "Casey")

        assert "[WELCOME] Email: casey@example.com Name: Casey" in caplog.text


class TestSendProfileDecisionEmail:
    """Tests for send_profile_decision_email method."""

    def test_new_profile_approved(self, caplog: pytest.LogCaptureFixture) -> None:
        sender = ConsoleEmailSender()

        with caplog.at_level(logging.INFO):
            sender.send_profile_decision_email(
                "erin@example.com", "Acme", approved=True, is_new_profile=True
            )

        assert "[DECISION]" in caplog.text
        assert "Company profile approved" in caplog.text
        assert "Reason" not in caplog.text

    def test_edit_rejected_with_reason(self, caplog: pytest.LogCaptureFixture) -> None:
        sender = ConsoleEmailSender()

        with caplog.at_level(logging.INFO):
            sender.send_profile_decision_email(
                "erin@example.com",
                "Acme",
                approved=False,
                is_new_profile=False,
                reason="Logo is blurry",
            )

        assert "Company profile changes rejected" in caplog.text
        assert "Reason: Logo is blurry" in caplog.text


class TestThreadSafety:
    """Tests for thread-safe logging."""

    def test_concurrent_logging_is_thread_safe(self, caplog: pytest.LogCaptureFixture) -> None:
        """Multiple concurrent calls don't corrupt log output."""
        sender = ConsoleEmailSender()
        emails = [f"user{i}@example.com" for i in range(10)]
        codes = [f"{i:06d}" for i in range(10)]

        with caplog.at_level(logging.INFO), ThreadPoolExecutor(max_workers=5) as executor:
            futures = [
                executor.submit(sender.send_otp_email, email, code, OtpPurpose.EMAIL_VERIFICATION, 5)
                for email, code in zip(emails, codes, strict=True)
            ]
            for f in futures:
                f.result()

        assert len(caplog.records) == 10
        for record in caplog.records:
            assert "[OTP]" in record.message
            assert "Email:" in record.message
            assert "Code:" in record.message
