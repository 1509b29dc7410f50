"""Reply categories produced by the classifier."""

from enum import StrEnum


class ReplyCategory(StrEnum):
    """Closed set of reply categories plus the NONE sentinel.

    Values double as the IMAP keyword written to classified messages.
    """

    INTERESTED = "interested"
    COMPLAINED = "complained"
    OUT_OF_OFFICE = "out_of_office"
    UNSUBSCRIBED = "unsubscribed"
    BOUNCED = "bounced"
    NONE = "none"

    @classmethod
    def parse(cls, value: str | None) -> "ReplyCategory":
        """Map free-form model output to a category; unknown values map to NONE."""
        if not value:
            return cls.NONE
        cleaned = value.strip().strip(".\"'`").lower().replace("-", "_").replace(" ", "_")
        try:
            return cls(cleaned)
        except ValueError:
            return cls.NONE

    @property
    def keyword(self) -> str | None:
        """IMAP keyword for this outcome; NONE writes only the marker."""
        if self is ReplyCategory.NONE:
            return None
        return self.value
