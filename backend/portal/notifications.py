from __future__ import annotations

import logging
import smtplib
from email.message import EmailMessage
from typing import Mapping

from portal.config import Settings

logger = logging.getLogger("portal.notifications")


class EmailNotifier:
    """Sends transactional email over SMTP.

    Delivery is best effort: an unconfigured host skips the send and SMTP
    errors are logged, never raised to the caller.
    """

    def __init__(self, settings: Settings) -> None:
        self._settings = settings

    @property
    def enabled(self) -> bool:
        return bool(self._settings.smtp_host.strip())

    def send(self, to_email: str, subject: str, body: str) -> bool:
        if not self.enabled:
            logger.info("email_skipped", extra={"event": "email_skipped", "subject": subject})
            return False

        message = EmailMessage()
        message["From"] = self._settings.email_from
        message["To"] = to_email
        message["Subject"] = subject
        message.set_content(body)

        try:
            with smtplib.SMTP(self._settings.smtp_host, self._settings.smtp_port, timeout=10) as server:
                if self._settings.smtp_use_tls:
                    server.starttls()
                if self._settings.smtp_user:
                    server.login(self._settings.smtp_user, self._settings.smtp_password)
                server.send_message(message)
        except (smtplib.SMTPException, OSError) as exc:
            logger.error(
                "email_send_failed",
                extra={"event": "email_send_failed", "subject": subject, "error": str(exc)},
            )
            return False

        logger.info("email_sent", extra={"event": "email_sent", "subject": subject})
        return True

    def send_submission_confirmation(self, applicant_email: str, proposal: Mapping[str, object]) -> bool:
        title = proposal.get("project_title") or "Untitled proposal"
        return self.send(
            applicant_email,
            f'Proposal Submitted Successfully: "{title}"',
            (
                "Dear Applicant,\n\n"
                f'Your research proposal "{title}" has been submitted.\n'
                f"Proposal ID: {proposal.get('id')}\n\n"
                "You will be notified of any status updates. You can track progress on your dashboard.\n"
            ),
        )

    def send_new_proposal_for_review(self, reviewer_email: str, proposal: Mapping[str, object]) -> bool:
        title = proposal.get("project_title") or "Untitled proposal"
        review_link = f"{self._settings.public_base_url.rstrip('/')}/proposal/{proposal.get('id')}"
        return self.send(
            reviewer_email,
            f'New R&D Proposal for Review: "{title}"',
            (
                "Dear Reviewer,\n\n"
                f'A new research proposal "{title}" has been submitted and requires your review.\n'
                f"Proposal ID: {proposal.get('id')}\n"
                f"Automated score: {proposal.get('ai_score')}%\n\n"
                f"Review it here: {review_link}\n"
            ),
        )

    def send_auto_rejection(self, applicant_email: str, proposal: Mapping[str, object]) -> bool:
        title = proposal.get("project_title") or "Untitled proposal"
        return self.send(
            applicant_email,
            f'Update on Your Proposal: "{title}"',
            (
                "Dear Applicant,\n\n"
                f'Thank you for submitting "{title}".\n'
                "After an initial automated screening, your proposal did not meet the minimum criteria "
                f"for further review. The automated score was {proposal.get('ai_score')}%, below the "
                f"required threshold of {self._settings.auto_reject_threshold}%.\n\n"
                "Please review the evaluation feedback on your dashboard before resubmitting in the future.\n"
            ),
        )
