"""Parser and generator for the ideas.md flat-file format.

Format::

    # Ideas

    ## Inbox
    - [ ] Some idea #tag1 #tag2 @file:path/to/file
    - [x] Completed idea

    ## Active
    - [ ] Working on this

    ## Archive
    - [x] Done with this

A section header switches the status of every checkbox line that follows it.
Checkbox lines before the first header belong to the inbox. Any other line
is prose and is ignored.
"""

from __future__ import annotations

import re
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Protocol

from backend.models.idea import IdeaStatus

_SECTION_PATTERNS: tuple[tuple[IdeaStatus, re.Pattern[str]], ...] = (
    (IdeaStatus.INBOX, re.compile(r"^##\s*inbox", re.IGNORECASE)),
    (IdeaStatus.ACTIVE, re.compile(r"^##\s*active", re.IGNORECASE)),
    (IdeaStatus.ARCHIVE, re.compile(r"^##\s*archive", re.IGNORECASE)),
)
_CHECKBOX_PATTERN = re.compile(r"^-\s*\[([ xX])\]\s*")
# \w is Unicode-aware, so tags in any script are recognised.
_TAG_PATTERN = re.compile(r"#(\w+)")
_REF_PATTERN = re.compile(r"@\w+:\S+")

ARCHIVE_DISPLAY_LIMIT = 20

_EMPTY_PLACEHOLDERS = {
    IdeaStatus.INBOX: "_No ideas in inbox_",
    IdeaStatus.ACTIVE: "_No active ideas_",
    IdeaStatus.ARCHIVE: "_No archived ideas_",
}

DEFAULT_IDEAS_TEMPLATE = """# Ideas

## Inbox

- [ ] Capture ideas here #example

## Active

_No active ideas_

## Archive

_No archived ideas_
"""


@dataclass
class ParsedIdea:
    """One checkbox line of an ideas file."""

    content: str
    status: IdeaStatus
    done: bool
    tags: list[str] = field(default_factory=list)
    refs: list[str] = field(default_factory=list)
    line_number: int = 0


@dataclass
class IdeasDocument:
    """Parsed ideas file, one list per section."""

    inbox: list[ParsedIdea] = field(default_factory=list)
    active: list[ParsedIdea] = field(default_factory=list)
    archive: list[ParsedIdea] = field(default_factory=list)
    raw_content: str = ""

    def section(self, status: IdeaStatus) -> list[ParsedIdea]:
        if status == IdeaStatus.ACTIVE:
            return self.active
        if status == IdeaStatus.ARCHIVE:
            return self.archive
        return self.inbox

    def all_ideas(self) -> list[ParsedIdea]:
        """All ideas in file order of sections: inbox, active, archive."""
        return [*self.inbox, *self.active, *self.archive]


class RenderableIdea(Protocol):
    content: str
    status: str
    done: bool


def _unique(values: Iterable[str]) -> list[str]:
    return list(dict.fromkeys(values))


def extract_tags(content: str) -> list[str]:
    """Return ``#word`` tokens without the ``#``, de-duplicated."""
    return _unique(_TAG_PATTERN.findall(content))


def extract_refs(content: str) -> list[str]:
    """Return ``@type:value`` tokens, de-duplicated."""
    return _unique(_REF_PATTERN.findall(content))


def detect_section(line: str) -> IdeaStatus | None:
    """Return the status a section header line switches to, if it is one."""
    stripped = line.strip()
    for status, pattern in _SECTION_PATTERNS:
        if pattern.match(stripped):
            return status
    return None


def parse_idea_line(line: str, status: IdeaStatus, line_number: int) -> ParsedIdea | None:
    """Parse one checkbox line, or return None when the line is not an idea."""
    stripped = line.strip()
    match = _CHECKBOX_PATTERN.match(stripped)
    if match is None:
        return None
    content = stripped[match.end() :].strip()
    if not content:
        return None
    return ParsedIdea(
        content=content,
        status=status,
        done=match.group(1).lower() == "x",
        tags=extract_tags(content),
        refs=extract_refs(content),
        line_number=line_number,
    )


def parse_ideas_content(text: str) -> IdeasDocument:
    """Parse ideas.md text. Malformed lines are skipped."""
    document = IdeasDocument(raw_content=text)
    current = IdeaStatus.INBOX
    for index, line in enumerate(text.splitlines(), start=1):
        section = detect_section(line)
        if section is not None:
            current = section
            continue
        idea = parse_idea_line(line, current, index)
        if idea is not None:
            document.section(current).append(idea)
    return document


def format_idea_line(idea: RenderableIdea) -> str:
    """Render one idea as a checkbox line; content is kept verbatim on one line."""
    checkbox = "[x]" if idea.done else "[ ]"
    content = " ".join(idea.content.splitlines())
    return f"- {checkbox} {content}"


def generate_ideas_content(ideas: Iterable[RenderableIdea]) -> str:
    """Render ideas as an ideas.md document.

    Ideas keep the order they are given within each section. Only the first
    ``ARCHIVE_DISPLAY_LIMIT`` archived ideas are written, followed by a note
    with the number left out.
    """
    sections: dict[IdeaStatus, list[RenderableIdea]] = {status: [] for status in IdeaStatus}
    for idea in ideas:
        try:
            status = IdeaStatus(idea.status)
        except ValueError:
            status = IdeaStatus.INBOX
        sections[status].append(idea)

    lines = ["# Ideas", ""]
    titles = {
        IdeaStatus.INBOX: "## Inbox",
        IdeaStatus.ACTIVE: "## Active",
        IdeaStatus.ARCHIVE: "## Archive",
    }
    for status in (IdeaStatus.INBOX, IdeaStatus.ACTIVE, IdeaStatus.ARCHIVE):
        lines.extend([titles[status], ""])
        entries = sections[status]
        if not entries:
            lines.extend([_EMPTY_PLACEHOLDERS[status], ""])
            continue
        shown = entries
        if status == IdeaStatus.ARCHIVE:
            shown = entries[:ARCHIVE_DISPLAY_LIMIT]
        lines.extend(format_idea_line(idea) for idea in shown)
        hidden = len(entries) - len(shown)
        if hidden > 0:
            lines.append(f"_... and {hidden} more archived ideas_")
        lines.append("")
    return "\n".join(lines)
