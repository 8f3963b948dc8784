import json
import logging
import os
import random
import string
import tempfile
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import NamedTuple

logger = logging.getLogger(__name__)

EXPORT_VERSION = 1

TAG_CATEGORIES = {
    "law": {
        "name": "Legal field",
        "color": "blue",
        "tags": ["Patent Act", "Trademark Act", "Design Act", "Copyright Act",
                 "Utility Model Act", "Unfair Competition Prevention Act", "Treaties"],
    },
    "concept": {
        "name": "Concepts & procedure",
        "color": "green",
        "tags": ["Requirements", "Procedure", "Term", "Effect", "Infringement",
                 "Application", "Registration", "Rights", "Limitations"],
    },
    "level": {
        "name": "Card type",
        "color": "yellow",
        "tags": ["Statute", "Vocabulary", "Explanation"],
    },
}


def category_for_tag(tag: str) -> str | None:
    for key, category in TAG_CATEGORIES.items():
        if tag in category["tags"]:
            return key
    return None


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def generate_id() -> str:
    suffix = "".join(random.choices(string.ascii_lowercase + string.digits, k=9))
    return f"{int(time.time() * 1000)}-{suffix}"


def _string_list(value, name: str) -> list[str]:
    if value is None:
        return []
    if not isinstance(value, list):
        raise ValueError(f"{name} must be a list")
    return [str(v) for v in value]


@dataclass
class Card:
    id: str
    title: str = ""
    content: str = ""
    tags: list[str] = field(default_factory=list)
    references: list[str] = field(default_factory=list)
    related_card_ids: list[str] = field(default_factory=list)
    created_at: str = ""
    updated_at: str = ""

    @classmethod
    def from_dict(cls, data: dict) -> "Card":
        """Build a card from its stored JSON shape.

        Cards written before references existed carry ``problemNumbers``
        instead; those are migrated on the way in.
        """
        if not isinstance(data, dict):
            raise ValueError("card must be an object")
        references = data.get("references")
        if references is None and "problemNumbers" in data:
            references = data["problemNumbers"]
        card_id = data.get("id")
        if not card_id:
            raise ValueError("card is missing an id")
        return cls(
            id=str(card_id),
            title=str(data.get("title") or ""),
            content=str(data.get("content") or ""),
            tags=_string_list(data.get("tags"), "tags"),
            references=_string_list(references, "references"),
            related_card_ids=_string_list(data.get("relatedCardIds"), "relatedCardIds"),
            created_at=str(data.get("createdAt") or ""),
            updated_at=str(data.get("updatedAt") or ""),
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "title": self.title,
            "content": self.content,
            "tags": list(self.tags),
            "references": list(self.references),
            "relatedCardIds": list(self.related_card_ids),
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
        }


# Fields a client may set; id and timestamps are owned by the store.
EDITABLE_FIELDS = {
    "title": "title",
    "content": "content",
    "tags": "tags",
    "references": "references",
    "relatedCardIds": "related_card_ids",
}


class ImportResult(NamedTuple):
    success: bool
    message: str
    count: int = 0


class CardStore:
    """Cards persisted as one JSON array on disk.

    Every call reads the file fresh, so two handles on the same path always
    agree. Writes go through a temp file and ``os.replace``.
    """

    def __init__(self, path: Path | str):
        self.path = Path(path)

    def _load(self) -> list[Card]:
        if not self.path.is_file():
            return []
        try:
            raw = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            logger.error("Failed to load cards from %s: %s", self.path, e)
            return []
        if not isinstance(raw, list):
            logger.error("Card file %s does not hold a list", self.path)
            return []
        cards = []
        for item in raw:
            try:
                cards.append(Card.from_dict(item))
            except ValueError as e:
                logger.warning("Skipping malformed card in %s: %s", self.path, e)
        return cards

    def _save(self, cards: list[Card]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        payload = json.dumps([c.to_dict() for c in cards], ensure_ascii=False, indent=2)
        fd, tmp = tempfile.mkstemp(dir=self.path.parent, prefix=".cards-", suffix=".json")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(payload)
            os.replace(tmp, self.path)
        except OSError:
            Path(tmp).unlink(missing_ok=True)
            raise

    def list_cards(self) -> list[Card]:
        return self._load()

    def get(self, card_id: str) -> Card | None:
        for card in self._load():
            if card.id == card_id:
                return card
        return None

    def add(self, data: dict) -> Card:
        now = _now_iso()
        fields = {"id": generate_id(), "createdAt": now, "updatedAt": now}
        fields.update({k: data[k] for k in EDITABLE_FIELDS if k in data})
        card = Card.from_dict(fields)
        cards = self._load()
        cards.append(card)
        self._save(cards)
        logger.info("Created card %s", card.id)
        return card

    def update(self, card_id: str, changes: dict) -> Card | None:
        cards = self._load()
        for i, card in enumerate(cards):
            if card.id != card_id:
                continue
            merged = card.to_dict()
            merged.update({k: changes[k] for k in EDITABLE_FIELDS if k in changes})
            merged["updatedAt"] = _now_iso()
            updated = Card.from_dict(merged)
            cards[i] = updated
            self._save(cards)
            return updated
        logger.warning("Card with id %s not found", card_id)
        return None

    def delete(self, card_id: str) -> bool:
        cards = self._load()
        kept = [c for c in cards if c.id != card_id]
        if len(kept) == len(cards):
            logger.warning("Card with id %s not found", card_id)
            return False
        self._save(kept)
        return True

    def search(self, query: str) -> list[Card]:
        cards = self._load()
        q = (query or "").lower()
        if not q:
            return cards
        return [
            c for c in cards
            if q in c.title.lower()
            or q in c.content.lower()
            or any(q in t.lower() for t in c.tags)
        ]

    # The filters narrow ``cards`` when given, so they chain after search().
    def filter_by_tags(self, tags, cards: list[Card] | None = None) -> list[Card]:
        wanted = set(tags)
        if cards is None:
            cards = self._load()
        return [c for c in cards if wanted <= set(c.tags)]

    def filter_by_reference(self, reference: str, cards: list[Card] | None = None) -> list[Card]:
        if cards is None:
            cards = self._load()
        return [c for c in cards if reference in c.references]

    def all_tags(self) -> list[str]:
        return sorted({t for c in self._load() for t in c.tags})

    def all_references(self) -> list[str]:
        return sorted({r for c in self._load() for r in c.references})

    def export_json(self) -> str:
        envelope = {
            "version": EXPORT_VERSION,
            "exportedAt": _now_iso(),
            "cards": [c.to_dict() for c in self._load()],
        }
        return json.dumps(envelope, ensure_ascii=False, indent=2)

    def import_json(self, text: str) -> ImportResult:
        try:
            data = json.loads(text)
        except ValueError:
            return ImportResult(False, "Invalid JSON")
        if isinstance(data, dict):
            items = data.get("cards")
        else:
            items = data
        if not isinstance(items, list):
            return ImportResult(False, "No card list found")
        try:
            cards = [Card.from_dict(item) for item in items]
        except ValueError as e:
            return ImportResult(False, f"Invalid card data: {e}")
        self._save(cards)
        logger.info("Imported %d cards into %s", len(cards), self.path)
        return ImportResult(True, f"Imported {len(cards)} cards", len(cards))
