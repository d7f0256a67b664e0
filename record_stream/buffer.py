"""Carry-over buffer and marker-based record segmentation.

The segmenter exploits the known input shape: a single array of flat JSON
objects wrapped as ``{"<field>": [ ... ]}`` (or a bare ``[ ... ]``). Adjacent
records are split on the marker ``}`` ``,`` ``{`` (whitespace allowed between
the tokens).

Precondition, documented rather than enforced: no string value inside a
record may contain the marker, and records must not nest object arrays
(``[{...},{...}]``) inside themselves. Input that breaks this is segmented
wrongly and normally surfaces as a ``DecodeError``. Use the ``tokenized``
strategy of ``StreamingRecordParser`` for such data.
"""
import json
import logging
import re
from typing import List, Optional

from record_stream.errors import SegmentError

logger = logging.getLogger(__name__)

MARKER = re.compile(rb'\}\s*,\s*\{')

# The array-open token has to show up within this many bytes.
MAX_WRAPPER_BYTES = 64 * 1024


class RecordLayout:
    """Opening and closing wrapper around the record array."""

    def __init__(self, array_field: Optional[str] = 'items'):
        self.array_field = array_field
        if array_field is None:
            self.prefix = re.compile(rb'\s*')
            self.suffix = re.compile(rb'\]\s*\Z')
        else:
            key = json.dumps(array_field).encode('utf-8')
            self.prefix = re.compile(rb'\s*\{\s*' + re.escape(key) + rb'\s*:\s*')
            self.suffix = re.compile(rb'\]\s*\}\s*\Z')

    @property
    def items_pointer(self) -> str:
        """ijson prefix addressing the records."""
        return 'item' if self.array_field is None else f"{self.array_field}.item"

    def __repr__(self):
        return f"RecordLayout(array_field={self.array_field!r})"


class AccumulationBuffer:
    """Bytes read so far that have not yet resolved into complete records.

    Owned by exactly one parse run. ``wrapper_stripped`` is the explicit
    first-pass phase flag: until the array-open token has been consumed,
    ``extract_complete`` only looks for the wrapper.
    """

    def __init__(self, layout: Optional[RecordLayout] = None):
        self.layout = layout or RecordLayout()
        self.wrapper_stripped = False
        self.extracted = 0
        self.peak_size = 0
        self._buf = bytearray()
        self._scan_from = 0

    def __len__(self):
        return len(self._buf)

    def append(self, data: bytes) -> None:
        self._buf += data
        if len(self._buf) > self.peak_size:
            self.peak_size = len(self._buf)

    def remainder(self) -> bytes:
        return bytes(self._buf)

    def clear(self) -> None:
        self._buf = bytearray()
        self._scan_from = 0

    def extract_complete(self) -> List[bytes]:
        """Split off every record followed by a marker, in order.

        The tail after the last marker stays buffered: it is at most one
        partial record, or the final record still waiting for its closing
        wrapper.
        """
        if not self.wrapper_stripped and not self._strip_wrapper():
            return []
        records = []
        start = 0
        for m in MARKER.finditer(self._buf, self._scan_from):
            records.append(bytes(self._buf[start:m.start() + 1]).strip())
            start = m.end() - 1
        if start:
            del self._buf[:start]
        # Only the last '}' can still grow into a marker.
        last_close = self._buf.rfind(b'}')
        self._scan_from = last_close if last_close >= 0 else len(self._buf)
        self.extracted += len(records)
        return records

    def finish(self) -> Optional[bytes]:
        """Close the run at end of stream; return the final record, if any."""
        if not self.wrapper_stripped and not self._strip_wrapper():
            raise SegmentError("stream ended before the record array opened",
                               record_index=self.extracted)
        m = self.layout.suffix.search(self._buf)
        if m is None:
            raise SegmentError("stream ended mid-record, closing wrapper missing",
                               record_index=self.extracted)
        tail = bytes(self._buf[:m.start()]).strip()
        self.clear()
        if not tail:
            return None
        if not (tail.startswith(b'{') and tail.endswith(b'}')):
            raise SegmentError(f"final record is incomplete: {tail[:40]!r}",
                               record_index=self.extracted)
        self.extracted += 1
        return tail

    def _strip_wrapper(self) -> bool:
        open_pos = self._buf.find(b'[')
        if open_pos < 0:
            if len(self._buf) > MAX_WRAPPER_BYTES:
                raise SegmentError(f"no array-open token in the first {MAX_WRAPPER_BYTES} bytes")
            return False
        if not self.layout.prefix.fullmatch(self._buf, 0, open_pos):
            head = bytes(self._buf[:min(open_pos, 40)])
            raise SegmentError(f"unexpected wrapper before record array: {head!r}, "
                               f"expected layout {self.layout!r}")
        del self._buf[:open_pos + 1]
        self.wrapper_stripped = True
        logger.debug(f"stripped {open_pos + 1} byte wrapper for {self.layout!r}")
        return True
