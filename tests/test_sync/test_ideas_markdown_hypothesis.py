"""Property-based round-trip tests for the ideas.md format."""

from __future__ import annotations

from dataclasses import dataclass

from hypothesis import given, settings
from hypothesis import strategies as st

from backend.filesystem.ideas_markdown import (
    ARCHIVE_DISPLAY_LIMIT,
    generate_ideas_content,
    parse_ideas_content,
)
from backend.models.idea import IdeaStatus


@dataclass
class _Idea:
    content: str
    status: str
    done: bool


# Content must survive strip() and must not itself look like markup the parser acts on.
_WORD = st.text(
    alphabet=st.characters(whitelist_categories=("L", "N"), whitelist_characters="#@:._-"),
    min_size=1,
    max_size=12,
)
_CONTENT = st.lists(_WORD, min_size=1, max_size=6).map(" ".join)

_IDEA = st.builds(
    _Idea,
    content=_CONTENT,
    status=st.sampled_from([status.value for status in IdeaStatus]),
    done=st.booleans(),
)


@settings(max_examples=200)
@given(st.lists(_IDEA, max_size=30))
def test_generate_then_parse_preserves_ideas(ideas: list[_Idea]) -> None:
    archived = [idea for idea in ideas if idea.status == IdeaStatus.ARCHIVE.value]
    expected = [
        (idea.content, idea.status, idea.done)
        for status in IdeaStatus
        for idea in (
            archived[:ARCHIVE_DISPLAY_LIMIT]
            if status == IdeaStatus.ARCHIVE
            else [i for i in ideas if i.status == status.value]
        )
    ]

    doc = parse_ideas_content(generate_ideas_content(ideas))

    assert [(i.content, i.status.value, i.done) for i in doc.all_ideas()] == expected


@settings(max_examples=100)
@given(st.lists(_IDEA, max_size=15))
def test_generation_is_a_fixed_point(ideas: list[_Idea]) -> None:
    once = generate_ideas_content(ideas)
    twice = generate_ideas_content(parse_ideas_content(once).all_ideas())
    assert once == twice
