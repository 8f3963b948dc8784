"""[[Title]] cross-references between cards.

A link token is ``[[X]]``; it resolves to the card whose trimmed title equals
the trimmed ``X``. Titles are matched as literal text, with no word-boundary
requirement, so a title inside a longer word still counts as an occurrence.
"""

import html
import re
from typing import TYPE_CHECKING, NamedTuple

if TYPE_CHECKING:
    from cards import Card

LINK_RE = re.compile(r'\[\[(.+?)\]\]')
# Fenced blocks and inline code spans, which markdown shows verbatim.
CODE_RE = re.compile(r'(^```.*?^```|^~~~.*?^~~~|`[^`\n]+`)', re.S | re.M)


class LinkCandidate(NamedTuple):
    card: "Card"
    occurrences: int
    unlinked: int


def _is_bracketed(text: str, start: int, end: int) -> bool:
    return text[max(0, start - 2):start] == "[[" and text[end:end + 2] == "]]"


def _unlinked_matches(text: str, title: str, flags: int = 0) -> list[re.Match]:
    pattern = re.compile(re.escape(title), flags)
    return [m for m in pattern.finditer(text)
            if not _is_bracketed(text, m.start(), m.end())]


def _cards_by_title(cards) -> dict[str, "Card"]:
    by_title = {}
    for card in cards:
        title = card.title.strip()
        if title:
            by_title.setdefault(title, card)
    return by_title


def resolve_links(content: str, cards, skip_code: bool = False) -> tuple[str, list[str]]:
    """Replace each [[X]] with a card anchor or a broken-link marker.

    Returns the markup together with the ids of the linked cards, in order of
    first appearance, for the caller to wire up navigation. With
    ``skip_code`` the text of markdown code spans and fenced blocks is left
    as written.
    """
    by_title = _cards_by_title(cards)
    targets: list[str] = []

    def replace(m):
        title = m.group(1)
        card = by_title.get(title.strip())
        label = html.escape(title)
        if card is None:
            return (f'<span class="broken-link" title="No card with this title">'
                    f'[[{label}]]</span>')
        if card.id not in targets:
            targets.append(card.id)
        card_id = html.escape(card.id, quote=True)
        return (f'<a href="#card:{card_id}" class="internal-link" '
                f'data-card-id="{card_id}">{label}</a>')

    if not skip_code:
        return LINK_RE.sub(replace, content), targets
    # split() with one group alternates prose and code, prose first.
    parts = CODE_RE.split(content)
    for i in range(0, len(parts), 2):
        parts[i] = LINK_RE.sub(replace, parts[i])
    return "".join(parts), targets


def extract_links(content: str) -> list[str]:
    return [m.group(1).strip() for m in LINK_RE.finditer(content)]


def find_link_candidates(content: str, cards, exclude_card_id: str | None = None) -> list[LinkCandidate]:
    """Cards whose titles appear in ``content`` outside of [[ ]].

    ``occurrences`` counts every case-insensitive hit, bracketed or not;
    ``unlinked`` counts only the hits that :func:`insert_link` would wrap.
    """
    candidates = []
    for card in cards:
        if exclude_card_id is not None and card.id == exclude_card_id:
            continue
        if not card.title.strip():
            continue
        unlinked = _unlinked_matches(content, card.title, re.IGNORECASE)
        if not unlinked:
            continue
        total = len(re.findall(re.escape(card.title), content, re.IGNORECASE))
        candidates.append(LinkCandidate(card, total, len(unlinked)))
    candidates.sort(key=lambda c: c.occurrences, reverse=True)
    return candidates


def insert_link(content: str, title: str) -> str:
    if not title.strip():
        return content
    out = []
    pos = 0
    for m in _unlinked_matches(content, title):
        out.append(content[pos:m.start()])
        out.append(f"[[{title}]]")
        pos = m.end()
    out.append(content[pos:])
    return "".join(out)
