import bisect
from typing import Optional


class LineMapper:
    """
    Maps character offsets of a text to (row, col) tuples using precomputed newline positions.
    O(N) initialization, O(log N) lookups.
    """
    def __init__(self, text: str):
        self.text_len = len(text)
        self.newlines = []
        pos = text.find("\n")
        while pos != -1:
            self.newlines.append(pos)
            pos = text.find("\n", pos + 1)

    @property
    def line_count(self) -> int:
        """Number of lines, counting the (possibly empty) line after a trailing newline."""
        return len(self.newlines) + 1

    def find_last_newline(self, lo: int, hi: int) -> Optional[int]:
        """
        Return the offset AFTER the last newline in [lo, hi), or None if there is none.
        Used to pull a size-based cut back onto a line boundary.
        """
        idx = bisect.bisect_left(self.newlines, hi) - 1
        if idx < 0 or self.newlines[idx] < lo:
            return None
        return self.newlines[idx] + 1

    def offset_to_point(self, offset: int) -> tuple[int, int]:
        """
        Convert a character offset to a 0-indexed (row, column) tuple.
        """
        if offset < 0 or offset > self.text_len:
            raise ValueError(f"Offset {offset} out of bounds (0-{self.text_len})")
        if offset == 0:
            return (0, 0)

        # Newlines strictly before the offset decide the row.
        # newlines=[10, 20], offset=15 -> idx=1 -> row 1, col 15 - 10 - 1 = 4.
        idx = bisect.bisect_left(self.newlines, offset)
        if idx == 0:
            return (0, offset)
        return (idx, offset - self.newlines[idx - 1] - 1)

    def line_of(self, offset: int) -> int:
        """1-based line number of the character at `offset`."""
        return self.offset_to_point(offset)[0] + 1

    def last_line_of(self, start: int, end: int) -> int:
        """
        1-based last line of the range [start, end). A trailing newline does not
        open a new line for the range.
        """
        if end <= start:
            return self.line_of(start)
        return self.line_of(end - 1)


class ByteOffsetMapper:
    """
    Converts UTF-8 byte offsets (as reported by tree-sitter) into character offsets
    of the decoded text. ASCII input maps one to one.
    """
    def __init__(self, contents: bytes, text: str):
        self._contents = contents
        self._identity = len(contents) == len(text)
        self._byte_newlines: list[int] = []
        self._char_line_starts: list[int] = [0]
        if self._identity:
            return
        pos = contents.find(b"\n")
        while pos != -1:
            self._byte_newlines.append(pos)
            pos = contents.find(b"\n", pos + 1)
        pos = text.find("\n")
        while pos != -1:
            self._char_line_starts.append(pos + 1)
            pos = text.find("\n", pos + 1)

    def to_char(self, byte_offset: int) -> int:
        if self._identity:
            return byte_offset
        row = bisect.bisect_left(self._byte_newlines, byte_offset)
        line_byte_start = 0 if row == 0 else self._byte_newlines[row - 1] + 1
        head = self._contents[line_byte_start:byte_offset].decode("utf-8", errors="replace")
        return self._char_line_starts[row] + len(head)
