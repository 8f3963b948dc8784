import json
from pathlib import Path

import pytest

from cards import Card, CardStore, category_for_tag


@pytest.fixture
def store(tmp_path: Path) -> CardStore:
    return CardStore(tmp_path / "cards.json")


def test_add_assigns_id_and_timestamps(store: CardStore) -> None:
    card = store.add({"title": "Patent Term", "tags": ["Patent Act"]})

    assert card.id
    assert card.created_at and card.created_at == card.updated_at
    assert store.get(card.id) == card
    assert [c.id for c in store.list_cards()] == [card.id]


def test_add_ignores_store_owned_fields(store: CardStore) -> None:
    card = store.add({"id": "forced", "title": "x", "createdAt": "yesterday"})

    assert card.id != "forced"
    assert card.created_at != "yesterday"


def test_add_rejects_non_list_tags(store: CardStore) -> None:
    with pytest.raises(ValueError):
        store.add({"title": "x", "tags": "not-a-list"})
    assert store.list_cards() == []


def test_update_merges_changes(store: CardStore) -> None:
    card = store.add({"title": "Old", "content": "body"})

    updated = store.update(card.id, {"title": "New", "id": "other"})

    assert updated.id == card.id
    assert updated.title == "New"
    assert updated.content == "body"
    assert updated.created_at == card.created_at
    assert store.get(card.id).title == "New"


def test_update_and_delete_missing_card(store: CardStore) -> None:
    assert store.update("nope", {"title": "x"}) is None
    assert store.delete("nope") is False


def test_delete(store: CardStore) -> None:
    card = store.add({"title": "x"})

    assert store.delete(card.id) is True
    assert store.get(card.id) is None


def test_search_and_filters(store: CardStore) -> None:
    store.add({"title": "Patent Term", "tags": ["Patent Act", "Term"], "references": ["Art. 67"]})
    store.add({"title": "Trademark renewal", "content": "ten YEARS", "tags": ["Trademark Act", "Term"]})
    store.add({"title": "Novelty", "tags": ["Patent Act"], "references": ["Art. 29"]})

    assert [c.title for c in store.search("years")] == ["Trademark renewal"]
    assert [c.title for c in store.search("trademark act")] == ["Trademark renewal"]
    assert len(store.search("")) == 3
    assert [c.title for c in store.filter_by_tags(["Patent Act"])] == ["Patent Term", "Novelty"]
    assert [c.title for c in store.filter_by_tags(["Patent Act", "Term"])] == ["Patent Term"]
    assert [c.title for c in store.filter_by_reference("Art. 29")] == ["Novelty"]
    assert store.all_tags() == ["Patent Act", "Term", "Trademark Act"]
    assert store.all_references() == ["Art. 29", "Art. 67"]


def test_filters_narrow_a_given_card_list(store: CardStore) -> None:
    store.add({"title": "Patent Term", "tags": ["Patent Act", "Term"], "references": ["Art. 67"]})
    store.add({"title": "Extension", "tags": ["Patent Act", "Term"], "references": ["Art. 67"]})
    store.add({"title": "Novelty", "tags": ["Patent Act"], "references": ["Art. 67"]})

    found = store.search("ext")

    assert [c.title for c in store.filter_by_tags(["Term"], found)] == ["Extension"]
    assert [c.title for c in store.filter_by_reference("Art. 67", found)] == ["Extension"]
    assert store.filter_by_tags(["Term"], []) == []


def test_export_envelope(store: CardStore) -> None:
    store.add({"title": "x"})

    data = json.loads(store.export_json())

    assert data["version"] == 1
    assert data["exportedAt"]
    assert data["cards"][0]["title"] == "x"
    assert set(data["cards"][0]) >= {"relatedCardIds", "createdAt", "updatedAt"}


def test_import_round_trip_between_stores(store: CardStore, tmp_path: Path) -> None:
    store.add({"title": "x", "tags": ["t"]})
    other = CardStore(tmp_path / "other.json")

    result = other.import_json(store.export_json())

    assert result.success and result.count == 1
    assert other.list_cards() == store.list_cards()


def test_import_migrates_problem_numbers(store: CardStore) -> None:
    legacy = [{"id": "1", "title": "old", "tags": [], "problemNumbers": ["Q12"], "relatedCardIds": []}]

    result = store.import_json(json.dumps(legacy))

    assert result.success
    assert store.get("1").references == ["Q12"]


@pytest.mark.parametrize("text", ["not json", "{}", '{"cards": "x"}', '[{"title": "no id"}]', "[1]"])
def test_import_rejects_bad_input_without_touching_store(store: CardStore, text: str) -> None:
    store.add({"title": "keep"})

    result = store.import_json(text)

    assert not result.success
    assert [c.title for c in store.list_cards()] == ["keep"]


def test_corrupt_file_loads_as_empty(tmp_path: Path) -> None:
    path = tmp_path / "cards.json"
    path.write_text("{broken", encoding="utf-8")

    assert CardStore(path).list_cards() == []


def test_card_dict_shape() -> None:
    card = Card.from_dict({"id": "1", "title": "t", "relatedCardIds": ["2"]})

    assert card.related_card_ids == ["2"]
    assert card.to_dict()["relatedCardIds"] == ["2"]
    assert card.references == []


def test_category_for_tag() -> None:
    assert category_for_tag("Patent Act") == "law"
    assert category_for_tag("Vocabulary") == "level"
    assert category_for_tag("unknown") is None
