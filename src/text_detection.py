from __future__ import annotations

from pathlib import Path
from typing import Iterable, List, Optional, Tuple


PRINTABLE_BYTES = set(b"\t\n\r\f\b" + bytes(range(32, 127)))

# Never worth sniffing.
BINARY_SUFFIXES = frozenset({
    ".png", ".jpg", ".jpeg", ".gif", ".bmp", ".ico", ".webp",
    ".pdf", ".zip", ".gz", ".tgz", ".bz2", ".xz", ".7z", ".jar",
    ".so", ".dylib", ".dll", ".exe", ".o", ".a", ".class", ".pyc",
    ".woff", ".woff2", ".ttf", ".otf", ".mp3", ".mp4", ".wav", ".sqlite", ".db",
})


class BinaryDetector:
    """Classify files as binary/text from their suffix and a leading byte sample."""

    def __init__(
        self,
        base_dir: Path | str | None = None,
        sample_size: int = 8192,
        threshold: float = 0.30,
    ) -> None:
        self._base_dir = Path(base_dir) if base_dir is not None else Path.cwd()
        self._sample_size = sample_size
        self._threshold = threshold

    def is_binary(self, path: str) -> bool:
        if Path(path).suffix.lower() in BINARY_SUFFIXES:
            return True
        sample = self._read_sample(path)
        if sample is None:
            return False
        return self.is_binary_sample(sample)

    def is_binary_sample(self, sample: bytes) -> bool:
        if not sample:
            return False
        if b"\x00" in sample:
            return True
        # Multi-byte UTF-8 is text even though its bytes are outside ASCII.
        try:
            sample.decode("utf-8")
            return False
        except UnicodeDecodeError as exc:
            # A sample cut inside a multi-byte sequence still counts as UTF-8.
            if exc.start >= len(sample) - 3 and exc.reason == "unexpected end of data":
                return False
        non_printable = sum(1 for b in sample if b not in PRINTABLE_BYTES)
        return non_printable / len(sample) > self._threshold

    def partition(self, paths: Iterable[str]) -> Tuple[List[str], List[str]]:
        """Split `paths` into (text, binary), each in input order."""
        text: List[str] = []
        binary: List[str] = []
        for p in paths:
            (binary if self.is_binary(p) else text).append(p)
        return text, binary

    def _read_sample(self, path: str) -> Optional[bytes]:
        p = Path(path)
        if not p.is_absolute():
            p = self._base_dir / p
        try:
            with p.open("rb") as fh:
                return fh.read(self._sample_size)
        except OSError:
            return None
