"""
Console email sender adapter - Implements EmailSender protocol.

This module provides a console-based implementation of the domain's
email sender port, logging every message to stdout for development.
"""

import logging

from src.domain.ports import OtpPurpose

logger = logging.getLogger(__name__)

OTP_SUBJECTS: dict[OtpPurpose, str] = {
    OtpPurpose.EMAIL_VERIFICATION: "Verify your email address",
    OtpPurpose.PASSWORD_RESET: "Reset your password",
    OtpPurpose.EMAIL_CHANGE: "Confirm your new email address",
}


class ConsoleEmailSender:
    """
    Implements EmailSender protocol via console logging.

    Uses structural subtyping - no explicit inheritance from Protocol.
    For demo/development purposes - prints verification codes to stdout.
    """

    def send_otp_email(self, email: str, code: str, purpose: OtpPurpose, ttl_minutes: int) -> None:
        """
        Log a one-time code to console (simulates email delivery).

        In production, this would be replaced with an SMTP adapter.
        The code is logged at INFO level to be visible in docker-compose logs.

        Args:
            email: Recipient email address (normalized by domain layer)
            code: Plaintext numeric code
            purpose: What the code unlocks, selects the subject line
            ttl_minutes: Validity shown to the recipient
        """
        logger.info(
            "[OTP] Email: %s Subject: %s Code: %s Valid: %d min",
            email,
            OTP_SUBJECTS[purpose],
            code,
            ttl_minutes,
        )

    def send_welcome_email(self, email: str, full_name: str) -> None:
        logger.info("[WELCOME] Email: %s Name: %s", email, full_name)

    def send_profile_decision_email(
        self,
        email: str,
        company_name: str,
        *,
        approved: bool,
        is_new_profile: bool,
        reason: str | None = None,
    ) -> None:
        """Log the outcome of an admin review of a company profile or its edits."""
        subject = "Company profile" if is_new_profile else "Company profile changes"
        outcome = "approved" if approved else "rejected"
        logger.info(
            "[DECISION] Email: %s Company: %s %s %s%s",
            email,
            company_name,
            subject,
            outcome,
            f" Reason: {reason}" if reason else "",
        )
