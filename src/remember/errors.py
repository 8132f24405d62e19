"""Error taxonomy shared by the store, sync and orchestrator."""

from __future__ import annotations


class JournalError(Exception):
    """Base class for all journal errors."""


class NotFound(JournalError):
    """An operation referenced an entry id that does not exist."""

    def __init__(self, entry_id: str) -> None:
        super().__init__(f"Entry {entry_id} not found")
        self.entry_id = entry_id


class ValidationFailed(JournalError):
    """Input was rejected before any write happened."""


class ChallengeRequired(ValidationFailed):
    """The entry has recall questions; restore it through a challenge."""


class StorageUnavailable(JournalError):
    """Local persistence could not be opened or written."""


class RemoteUnavailable(JournalError):
    """The remote failed, timed out or rejected the request. Retried next tick."""


class AttachmentIOFailed(JournalError):
    """A single attachment blob could not be read or written."""

    def __init__(self, attachment_id: str, reason: str) -> None:
        super().__init__(f"Attachment {attachment_id}: {reason}")
        self.attachment_id = attachment_id
