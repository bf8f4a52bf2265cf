"""Result type for notification email delivery."""

from dataclasses import dataclass
from typing import List, Optional


@dataclass
class EmailResult:
    """Result of attempting to send a notification email.

    Attributes:
        notification_ids: Notifications covered by the email
        status: Outcome status (sent, skipped, failed)
        attempts: Number of send attempts made
        recipient: Address the email was sent to, when known
        reason: Why the email was skipped
        error: Error message if delivery failed
    """

    notification_ids: List[int]
    status: str  # "sent", "skipped", "failed"
    attempts: int = 0
    recipient: Optional[str] = None
    reason: Optional[str] = None
    error: Optional[str] = None

    def is_success(self) -> bool:
        """Check if the email was sent.

        Returns:
            True if status is "sent", False otherwise
        """
        return self.status == "sent"
