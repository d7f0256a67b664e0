"""Error taxonomy for streaming record parsing."""
from typing import Optional


class ParseError(Exception):
    """Terminal failure of one parse run.

    ``record_index`` is the 1-based count of records segmented so far, so a
    failure deep inside a multi-gigabyte file can be located.
    """

    def __init__(self, message: str, record_index: int = 0):
        super().__init__(message)
        self.record_index = record_index

    def __str__(self):
        base = super().__str__()
        if self.record_index:
            return f"{base} (record {self.record_index})"
        return base


class ReadError(ParseError):
    """The byte source failed or reported an invalid read count."""


class SegmentError(ParseError):
    """Wrapper or delimiter structure is malformed, e.g. a truncated file."""


class DecodeError(ParseError):
    """A segmented record is not a valid instance of the target type."""

    def __init__(self, index: int, detail: str, raw: Optional[bytes] = None):
        super().__init__(f"cannot decode record: {detail}", record_index=index)
        self.index = index
        self.detail = detail
        self.raw = raw

    def snippet(self, limit: int = 120) -> str:
        if not self.raw:
            return ''
        text = self.raw[:limit].decode('utf-8', errors='replace')
        return text + ('...' if len(self.raw) > limit else '')


class ParseCancelledError(ParseError):
    """The run was cancelled by the caller or exceeded its timeout."""

    def __init__(self, reason: str, record_index: int = 0):
        super().__init__(f"parse {reason}", record_index=record_index)
        self.reason = reason
