from cards import Card
from internal_links import extract_links, find_link_candidates, insert_link, resolve_links


def _cards():
    return [
        Card(id="1", title="Patent Term"),
        Card(id="2", title="Priority (Paris)"),
        Card(id="3", title="   "),
        Card(id="4", title="Term"),
    ]


def test_resolve_links_points_at_card_id() -> None:
    markup, targets = resolve_links("See [[Patent Term]]", _cards())

    assert 'data-card-id="1"' in markup
    assert 'class="internal-link"' in markup
    assert targets == ["1"]


def test_resolve_links_trims_inner_whitespace() -> None:
    markup, targets = resolve_links("See [[  Patent Term ]]", _cards())

    assert targets == ["1"]
    assert "[[" not in markup


def test_resolve_links_broken_reference_keeps_text() -> None:
    markup, targets = resolve_links("See [[Patent Term]]", [])

    assert targets == []
    assert 'class="broken-link"' in markup
    assert "[[Patent Term]]" in markup


def test_resolve_links_is_case_sensitive() -> None:
    _, targets = resolve_links("[[patent term]]", _cards())

    assert targets == []


def test_resolve_links_escapes_markup_in_title() -> None:
    markup, _ = resolve_links("[[<b>x</b>]]", [])

    assert "<b>" not in markup
    assert "&lt;b&gt;" in markup


def test_resolve_links_ignores_unterminated_brackets() -> None:
    markup, targets = resolve_links("open [[Patent Term and nothing else", _cards())

    assert markup == "open [[Patent Term and nothing else"
    assert targets == []


def test_resolve_links_lists_each_target_once() -> None:
    _, targets = resolve_links("[[Term]] [[Patent Term]] [[Term]]", _cards())

    assert targets == ["4", "1"]


def test_extract_links() -> None:
    assert extract_links("a [[ One ]] b [[Two]] c [[broken") == ["One", "Two"]


def test_candidates_skip_already_linked_occurrence() -> None:
    cards = [Card(id="1", title="Patent Term")]

    found = find_link_candidates("[[Patent Term]] and Patent Term again", cards)

    assert len(found) == 1
    assert found[0].card.id == "1"
    assert found[0].unlinked == 1
    assert found[0].occurrences == 2


def test_candidates_fully_linked_card_is_not_reported() -> None:
    cards = [Card(id="1", title="Patent Term")]

    assert find_link_candidates("only [[Patent Term]] here", cards) == []


def test_candidates_exclude_current_and_blank_titles() -> None:
    content = "Patent Term"

    found = find_link_candidates(content, _cards(), exclude_card_id="1")

    assert [c.card.id for c in found] == ["4"]


def test_candidates_case_insensitive_and_sorted_by_count() -> None:
    content = "term, TERM and patent term"

    found = find_link_candidates(content, _cards())

    assert [c.card.id for c in found] == ["4", "1"]
    assert found[0].occurrences == 3
    assert found[1].occurrences == 1


def test_candidates_escape_pattern_characters() -> None:
    cards = [Card(id="2", title="Priority (Paris)"), Card(id="9", title="a.c")]

    found = find_link_candidates("Priority (Paris) applies; abc is not a.c", cards)

    assert {c.card.id: c.occurrences for c in found} == {"2": 1, "9": 1}


def test_candidates_half_bracketed_occurrence_still_counts() -> None:
    cards = [Card(id="1", title="Patent Term")]

    found = find_link_candidates("[[Patent Term is unterminated", cards)

    assert [c.unlinked for c in found] == [1]


def test_insert_link_wraps_unlinked_occurrences() -> None:
    result = insert_link("Patent Term vs [[Patent Term]] vs Patent Term", "Patent Term")

    assert result == "[[Patent Term]] vs [[Patent Term]] vs [[Patent Term]]"


def test_insert_link_is_idempotent() -> None:
    samples = [
        "Patent Term",
        "Patent Term and Patent Term",
        "[[Patent Term]] then Patent Term",
        "Patent Term]] dangling",
        "[[Patent Term dangling",
        "nothing relevant",
    ]
    for content in samples:
        once = insert_link(content, "Patent Term")
        assert insert_link(once, "Patent Term") == once


def test_insert_link_matches_inside_words_and_multibyte_text() -> None:
    assert insert_link("Terminology", "Term") == "[[Term]]inology"
    assert insert_link("特許法と特許", "特許") == "[[特許]]法と[[特許]]"


def test_insert_link_is_case_sensitive() -> None:
    assert insert_link("patent term", "Patent Term") == "patent term"


def test_insert_link_blank_title_is_noop() -> None:
    assert insert_link("some text", "  ") == "some text"


def test_link_engine_does_not_mutate_cards() -> None:
    cards = _cards()
    before = [c.to_dict() for c in cards]

    resolve_links("[[Term]]", cards)
    find_link_candidates("Term", cards)

    assert [c.to_dict() for c in cards] == before


def test_resolve_links_never_targets_untitled_card() -> None:
    markup, targets = resolve_links("see [[ ]] and [[   ]]", _cards())

    assert targets == []
    assert 'data-card-id="3"' not in markup
    assert markup.count('class="broken-link"') == 2


def test_resolve_links_can_leave_code_alone() -> None:
    text = "Use `[[Term]]` for [[Term]].\n\n```\n[[Patent Term]]\n```\n"

    markup, targets = resolve_links(text, _cards(), skip_code=True)

    assert "`[[Term]]`" in markup
    assert "```\n[[Patent Term]]\n```" in markup
    assert markup.count('class="internal-link"') == 1
    assert targets == ["4"]


def test_resolve_links_resolves_code_by_default() -> None:
    _, targets = resolve_links("`[[Term]]`", _cards())

    assert targets == ["4"]
