"""Task document model: YAML header, title and ordered ``##`` sections.

On-disk form:

    ---
    id: impl-auth-05A
    title: Implement auth
    type: feature
    ---

    # Implement auth

    ## Instruction

    Free text.

    ## Tasks

    - [ ] First step
    - [x] Done step

    ## Deliverable

    ## Log

    - 2025-05-01 09:30: Created

Section keys are lower-cased. Canonical sections are always written first in
canonical order; custom sections follow in the order they were added, under
their original heading.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any

import yaml

from taskcraft.errors import ParseError

logger = logging.getLogger(__name__)

HEADER_DELIMITER = "---"

# key -> heading, in canonical order
CANONICAL_SECTIONS: dict[str, str] = {
    "instruction": "Instruction",
    "tasks": "Tasks",
    "deliverable": "Deliverable",
    "log": "Log",
}
REQUIRED_SECTIONS = tuple(CANONICAL_SECTIONS)

_TITLE_RE = re.compile(r"^#\s+(.+?)\s*$")
_SECTION_RE = re.compile(r"^##\s+(.+?)\s*$")
_FENCE_RE = re.compile(r"^\s*(`{3,}|~{3,})")
_CHECKBOX_RE = re.compile(r"^\s*[-*]\s+\[([ xX])\]\s?(.*)$")


@dataclass
class ChecklistItem:
    """One ``- [ ]`` line of the tasks section."""

    done: bool
    text: str

    def to_markdown(self) -> str:
        return f"- [{'x' if self.done else ' '}] {self.text}"


def parse_checklist(text: str) -> list[ChecklistItem]:
    """Extract checkbox items; other lines are ignored."""
    items = []
    for line in text.splitlines():
        match = _CHECKBOX_RE.match(line)
        if match:
            items.append(ChecklistItem(done=match.group(1) != " ", text=match.group(2).strip()))
    return items


def format_checklist(items: list[ChecklistItem]) -> str:
    return "\n".join(item.to_markdown() for item in items)


def section_key(name: str) -> str:
    return name.strip().lower()


@dataclass
class TaskDocument:
    """Title, header mapping and named sections of one task file.

    Attributes:
        title: Text of the ``# `` line
        header: Frontmatter mapping; unknown keys are kept as-is
        sections: Section key -> content, in insertion order
        headings: Section key -> heading as written (custom sections only
            need an entry; canonical sections use their canonical heading)
        preamble: Free text between the title and the first section
    """

    title: str
    header: dict[str, Any] = field(default_factory=dict)
    sections: dict[str, str] = field(default_factory=dict)
    headings: dict[str, str] = field(default_factory=dict)
    preamble: str = ""

    def get_section(self, name: str) -> str | None:
        return self.sections.get(section_key(name))

    def set_section(self, name: str, content: str) -> None:
        key = section_key(name)
        if key not in CANONICAL_SECTIONS and key not in self.headings:
            self.headings[key] = name.strip()
        self.sections[key] = content.strip("\n").rstrip()

    def remove_section(self, name: str) -> bool:
        key = section_key(name)
        self.headings.pop(key, None)
        return self.sections.pop(key, None) is not None

    def heading_for(self, key: str) -> str:
        return CANONICAL_SECTIONS.get(key) or self.headings.get(key) or key.title()

    def ordered_sections(self) -> list[tuple[str, str]]:
        """(key, content) pairs: canonical sections first, then custom ones."""
        canonical = [(k, self.sections[k]) for k in CANONICAL_SECTIONS if k in self.sections]
        custom = [(k, v) for k, v in self.sections.items() if k not in CANONICAL_SECTIONS]
        return canonical + custom

    @property
    def custom_sections(self) -> dict[str, str]:
        return {k: v for k, v in self.sections.items() if k not in CANONICAL_SECTIONS}

    @property
    def checklist(self) -> list[ChecklistItem]:
        return parse_checklist(self.sections.get("tasks", ""))

    def set_checklist(self, items: list[ChecklistItem]) -> None:
        self.set_section("tasks", format_checklist(items))


# =============================================================================
# Parse
# =============================================================================


def _split_header(text: str, path: Path | None) -> tuple[dict[str, Any], list[str]]:
    lines = text.lstrip("\ufeff").splitlines()
    if not lines or lines[0].strip() != HEADER_DELIMITER:
        raise ParseError("Task file must start with a '---' header block", path=path)

    for end, line in enumerate(lines[1:], start=1):
        if line.strip() == HEADER_DELIMITER:
            break
    else:
        raise ParseError("Unterminated header block (no closing '---')", path=path)

    try:
        header = yaml.safe_load("\n".join(lines[1:end]))
    except yaml.YAMLError as e:
        raise ParseError(f"Invalid YAML header: {e}", path=path) from e

    if header is None:
        header = {}
    if not isinstance(header, dict):
        raise ParseError("Header block must be a key/value mapping", path=path)
    return header, lines[end + 1 :]


def _toggle_fence(open_marker: str | None, marker: str) -> str | None:
    """Open a fence, or close it with a run of the same character at least as long."""
    if open_marker is None:
        return marker
    if marker[0] == open_marker[0] and len(marker) >= len(open_marker):
        return None
    return open_marker


def parse_document(text: str, path: Path | None = None) -> TaskDocument:
    """Parse the on-disk text of a task.

    Args:
        text: Full file content
        path: File the text came from, for error messages

    Raises:
        ParseError: Malformed or unterminated header block, or no ``# `` title
    """
    header, body = _split_header(text, path)

    title: str | None = None
    preamble: list[str] = []
    sections: dict[str, list[str]] = {}
    headings: dict[str, str] = {}
    current: list[str] | None = None
    fence: str | None = None  # marker of the open code fence

    for line in body:
        marker = _FENCE_RE.match(line)
        if marker:
            fence = _toggle_fence(fence, marker.group(1))
        if fence is None and not marker:
            section = _SECTION_RE.match(line)
            if section:
                name = section.group(1)
                key = section_key(name)
                if key not in CANONICAL_SECTIONS:
                    headings.setdefault(key, name)
                current = sections.setdefault(key, [])
                if current:
                    current.append("")
                continue
            if title is None and current is None:
                heading = _TITLE_RE.match(line)
                if heading:
                    title = heading.group(1)
                    continue
        if current is not None:
            current.append(line)
        elif title is not None:
            preamble.append(line)
        elif line.strip():
            break

    if title is None:
        raise ParseError("Missing '# Title' line after the header block", path=path)

    return TaskDocument(
        title=title,
        header=header,
        sections={k: "\n".join(v).strip("\n").rstrip() for k, v in sections.items()},
        headings=headings,
        preamble="\n".join(preamble).strip("\n").rstrip(),
    )


# =============================================================================
# Serialize
# =============================================================================


def serialize_header(header: dict[str, Any]) -> str:
    if not header:
        return f"{HEADER_DELIMITER}\n{HEADER_DELIMITER}\n"
    dumped = yaml.dump(header, default_flow_style=False, sort_keys=False, allow_unicode=True)
    return f"{HEADER_DELIMITER}\n{dumped.rstrip()}\n{HEADER_DELIMITER}\n"


def serialize_sections(document: TaskDocument) -> str:
    """Content-only form: every section block, no header and no title."""
    blocks = []
    for key, content in document.ordered_sections():
        block = f"## {document.heading_for(key)}\n"
        if content:
            block += f"\n{content}\n"
        blocks.append(block)
    return "\n".join(blocks)


def serialize_document(document: TaskDocument, *, content_only: bool = False) -> str:
    """Render a document to text.

    Args:
        document: Document to render
        content_only: Emit only the section blocks (for diffing and substitution)
    """
    if content_only:
        return serialize_sections(document)

    parts = [serialize_header(document.header), f"# {document.title}\n"]
    if document.preamble:
        parts.append(f"{document.preamble}\n")
    sections = serialize_sections(document)
    if sections:
        parts.append(sections)
    return "\n".join(parts)


# =============================================================================
# Helpers
# =============================================================================


def ensure_required_sections(document: TaskDocument) -> TaskDocument:
    """Add any missing canonical section with empty content."""
    for key in REQUIRED_SECTIONS:
        document.sections.setdefault(key, "")
    return document


def add_log_entry(document: TaskDocument, message: str, when: datetime | None = None) -> str:
    """Append ``- YYYY-MM-DD HH:MM: message`` to the log section.

    Returns:
        The line that was added
    """
    when = when or datetime.now()
    entry = f"- {when:%Y-%m-%d %H:%M}: {message.strip()}"
    existing = document.sections.get("log", "")
    document.sections["log"] = f"{existing}\n{entry}" if existing else entry
    return entry


def validate_document(document: TaskDocument) -> list[str]:
    """Check a document for structural problems.

    Returns:
        List of problems (empty if valid)
    """
    problems = []
    if not document.title or not document.title.strip():
        problems.append("Title is empty")
    if not isinstance(document.header, dict):
        problems.append("Header is not a key/value mapping")
    for key in REQUIRED_SECTIONS:
        if key not in document.sections:
            problems.append(f"Missing section: {CANONICAL_SECTIONS[key]}")
    return problems
