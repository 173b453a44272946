from dataclasses import dataclass, field
from typing import Any, Dict


@dataclass(frozen=True)
class ChunkResult:
    content: str
    type: str
    start_line: int
    end_line: int
    metadata: Dict[str, Any] = field(default_factory=dict, compare=False)

    @property
    def is_semantic(self) -> bool:
        """Semantic chunks come straight from a boundary node and are never merged."""
        return not self.metadata.get("split")

    @property
    def is_fallback(self) -> bool:
        return bool(self.metadata.get("fallback"))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "content": self.content,
            "type": self.type,
            "startLine": self.start_line,
            "endLine": self.end_line,
            "metadata": dict(self.metadata),
        }
