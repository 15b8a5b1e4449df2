"""
Mailbox classification index keyed by normalized UPN / e-mail.
"""
import logging
from typing import Dict, Iterable, Optional

from .models import MailboxClassification, MailboxRecord, RecipientKind

logger = logging.getLogger(__name__)


def normalize_key(value: Optional[str]) -> str:
    """Trim and case-fold an identifier; empty string if there is nothing left."""
    if not value:
        return ""
    return str(value).strip().lower()


class MailboxIndex:
    """
    Lookup from identifier to recipient kind.

    The first mailbox recorded for a key wins; later mailboxes sharing the
    key are ignored.
    """

    def __init__(self):
        self._kinds: Dict[str, RecipientKind] = {}

    def __len__(self) -> int:
        return len(self._kinds)

    def __contains__(self, key: str) -> bool:
        return normalize_key(key) in self._kinds

    def add(self, record: MailboxRecord) -> None:
        kind = record.kind
        for raw_key in (record.user_principal_name, record.primary_email):
            key = normalize_key(raw_key)
            if key and key not in self._kinds:
                self._kinds[key] = kind

    def get(self, key: Optional[str]) -> Optional[RecipientKind]:
        return self._kinds.get(normalize_key(key))

    def classify(self, user_principal_name: Optional[str],
                 email: Optional[str] = None) -> MailboxClassification:
        """Classify an identity by UPN first, then e-mail."""
        kind = self.get(user_principal_name)
        if kind is None:
            kind = self.get(email)
        return MailboxClassification.from_recipient_kind(kind)


def build_mailbox_index(records: Iterable[MailboxRecord]) -> MailboxIndex:
    """Build the classification index from a raw mailbox listing."""
    index = MailboxIndex()
    count = 0
    for record in records:
        index.add(record)
        count += 1
    logger.info(f"Indexed {count} mailboxes under {len(index)} keys")
    return index
