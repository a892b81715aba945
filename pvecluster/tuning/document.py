"""
PVECluster Corosync Document

Line-preserving structured view of ``corosync.conf``. The format is a
tree of ``name { ... }`` sections holding ``key: value`` lines. Only the
direct keys of a top-level section are edited; nested subsections such
as ``interface { ... }`` and every other line (comments, blank lines,
indentation) are carried through untouched.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Tuple

_SECTION_OPEN_RE = re.compile(r"^\s*([\w.-]+)\s*\{\s*(#.*)?$")
_SECTION_CLOSE_RE = re.compile(r"^\s*\}\s*(#.*)?$")
_KEY_RE = re.compile(r"^(\s*)([\w.-]+)\s*:\s*(.*?)\s*$")

_DEFAULT_INDENT = "  "


class DocumentSyntaxError(ValueError):
    """Unbalanced braces or a stray closing brace."""


@dataclass
class Section:
    """A top-level section: its line span and direct key positions."""

    name: str
    start: int                  # line index of "name {"
    end: int                    # line index of the closing "}"
    keys: Dict[str, int] = field(default_factory=dict)

    def indent(self, lines: Tuple[str, ...]) -> str:
        """Indentation used by the section's direct keys."""
        for index in sorted(self.keys.values()):
            match = _KEY_RE.match(lines[index])
            if match:
                return match.group(1)
        opening = lines[self.start]
        return opening[: len(opening) - len(opening.lstrip())] + _DEFAULT_INDENT


class CorosyncDocument:
    """Parsed corosync configuration."""

    def __init__(self, lines: Iterable[str], trailing_newline: bool = True) -> None:
        self.lines: Tuple[str, ...] = tuple(lines)
        self.trailing_newline = trailing_newline
        self.sections: List[Section] = self._index(self.lines)

    @classmethod
    def parse(cls, text: str) -> CorosyncDocument:
        return cls(text.splitlines(), trailing_newline=text.endswith("\n") or not text)

    def render(self) -> str:
        text = "\n".join(self.lines)
        if self.trailing_newline and self.lines:
            text += "\n"
        return text

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, CorosyncDocument):
            return NotImplemented
        return self.render() == other.render()

    def __hash__(self) -> int:
        return hash(self.render())

    @staticmethod
    def _index(lines: Tuple[str, ...]) -> List[Section]:
        sections: List[Section] = []
        depth = 0
        current: Optional[Section] = None

        for index, line in enumerate(lines):
            stripped = line.strip()
            if not stripped or stripped.startswith("#"):
                continue

            if _SECTION_OPEN_RE.match(line):
                if depth == 0:
                    current = Section(name=_SECTION_OPEN_RE.match(line).group(1), start=index, end=-1)
                depth += 1
            elif _SECTION_CLOSE_RE.match(line):
                depth -= 1
                if depth < 0:
                    raise DocumentSyntaxError(f"Unexpected '}}' on line {index + 1}")
                if depth == 0 and current is not None:
                    current.end = index
                    sections.append(current)
                    current = None
            elif depth == 1 and current is not None:
                match = _KEY_RE.match(line)
                if match and match.group(2) not in current.keys:
                    current.keys[match.group(2)] = index

        if depth != 0:
            raise DocumentSyntaxError("Unbalanced braces: section not closed")
        return sections

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def section(self, name: str) -> Optional[Section]:
        for section in self.sections:
            if section.name == name:
                return section
        return None

    def get(self, section_name: str, key: str) -> Optional[str]:
        """Value of a direct key of ``section_name``, or None."""
        section = self.section(section_name)
        if section is None or key not in section.keys:
            return None
        match = _KEY_RE.match(self.lines[section.keys[key]])
        return match.group(3) if match else None

    # ------------------------------------------------------------------
    # Edits (each returns a new document)
    # ------------------------------------------------------------------

    def with_values(self, section_name: str, values: Iterable[Tuple[str, object]]) -> CorosyncDocument:
        """
        Update-or-insert direct keys of ``section_name``.

        Present keys are rewritten in place keeping their indentation.
        Missing keys are appended before the closing brace in the order
        given.

        Raises:
            KeyError: If the section does not exist
        """
        section = self.section(section_name)
        if section is None:
            raise KeyError(section_name)

        indent = section.indent(self.lines)
        replaced: Dict[int, str] = {}
        inserted: List[str] = []

        for key, value in values:
            if key in section.keys:
                index = section.keys[key]
                key_indent = _KEY_RE.match(self.lines[index]).group(1)
                replaced[index] = f"{key_indent}{key}: {value}"
            else:
                inserted.append(f"{indent}{key}: {value}")

        lines = [replaced.get(i, line) for i, line in enumerate(self.lines)]
        lines[section.end:section.end] = inserted
        return CorosyncDocument(lines, trailing_newline=self.trailing_newline)

    def bump_version(self, section_name: str = "totem", key: str = "config_version") -> CorosyncDocument:
        """Increment an integer version key if present."""
        current = self.get(section_name, key)
        if current is None or not current.isdigit():
            return self
        return self.with_values(section_name, [(key, int(current) + 1)])
