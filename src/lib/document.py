"""
In-memory chat document

The editor owns the real buffer; this class is the narrow line-range
interface the core needs from it: read a snapshot of lines, and replace a
half-open range of lines. Editor integrations adapt their buffer to the
same two operations.
"""

from pathlib import Path
from typing import List, Optional


class Document:
    """
    Ordered, mutable sequence of text lines

    Attributes:
        lines: Current lines (no trailing newline characters)
        name: Optional label used in log messages and request ids
        valid: False once the owning buffer went away; expansions that
               complete afterwards are dropped
    """

    def __init__(self, lines: Optional[List[str]] = None, name: str = "document") -> None:
        self.lines: List[str] = list(lines) if lines else []
        self.name = name
        self.valid = True

    @classmethod
    def from_text(cls, text: str, name: str = "document") -> "Document":
        """
        Split text into lines; a single trailing newline does not create
        an extra empty line.

        Example:
            >>> Document.from_text(">>> user\\nHello\\n").lines
            ['>>> user', 'Hello']
        """
        if text.endswith("\n"):
            text = text[:-1]
        return cls(text.split("\n") if text else [], name=name)

    @classmethod
    def from_file(cls, path: Path) -> "Document":
        return cls.from_text(Path(path).read_text(encoding="utf-8"), name=Path(path).name)

    def text(self) -> str:
        return "\n".join(self.lines)

    def __len__(self) -> int:
        return len(self.lines)

    def line_get(self, index: int) -> str:
        return self.lines[index]

    def lines_get(self, start: int = 0, end: Optional[int] = None) -> List[str]:
        """Copy of lines[start:end]"""
        return list(self.lines[start:end])

    def lines_replace(self, start: int, end: int, new_lines: List[str]) -> int:
        """
        Replace the half-open range [start, end) with new_lines.

        Args:
            start: First line to replace (0-based)
            end: One past the last line to replace
            new_lines: Replacement lines

        Returns:
            Net line-count delta (len(new_lines) - (end - start))

        Raises:
            IndexError: If the range falls outside the document
        """
        if start < 0 or end < start or end > len(self.lines):
            raise IndexError(
                f"Range {start}-{end} outside document '{self.name}' of {len(self.lines)} lines"
            )
        self.lines[start:end] = list(new_lines)
        return len(new_lines) - (end - start)

    def close(self) -> None:
        """Mark the document as gone (the editor closed the buffer)"""
        self.valid = False
