

import json
import shutil
from pathlib import Path


from cards import CardStore
from relgraph import build_graph, compute_distances
from server import (
    app,
    BASE,
    render_markdown,
    MAIN_TEMPLATE,
)

README = """\
# Study Cards (frozen)

A read-only snapshot of my study cards.

The live version is a small Python/Flask app that keeps the cards in a JSON
file and lets me edit them, link them with `[[Title]]` references and explore
how they relate in a graph. This folder is the frozen copy: the same viewer,
served as static files, with editing switched off.

- `data/cards.json` holds every card in the export format, so it can be
  imported back into the live app.
- `data/graph.json` is the full relationship graph (explicit links, shared
  references, shared tags).
- `data/levels/` holds the relevance levels around each card, used by the
  graph's radius filter.
"""

OUTPUT = BASE / "_site"


def card_filename(card_id: str) -> str:
    # Hex of the UTF-8 id: never a path separator, and the page script derives
    # the same name.
    return card_id.encode("utf-8").hex() + ".json"


def generate_card_json(card, cards):

    html, targets = render_markdown(card.content, cards)
    data = card.to_dict()
    data.update({"html": html, "links": targets})
    return data


def patch_template(html):

    return html.replace("const STATIC_MODE = false;", "const STATIC_MODE = true;")


def build(cards_file: Path | str | None = None, output: Path | None = None):

    cards_file = cards_file or app.config["CARDS_FILE"]
    output = Path(output) if output else OUTPUT
    data_dir = output / "data"
    card_dir = data_dir / "cards"
    levels_dir = data_dir / "levels"

    print("Building static site...")

    if output.exists():
        for item in output.iterdir():
            if item.name == ".git":
                continue
            if item.is_dir():
                shutil.rmtree(item)
            else:
                item.unlink()
    card_dir.mkdir(parents=True, exist_ok=True)
    levels_dir.mkdir(parents=True, exist_ok=True)

    store = CardStore(cards_file)
    cards = store.list_cards()

    (data_dir / "cards.json").write_text(store.export_json(), encoding="utf-8")
    print(f"  cards.json ({len(cards)} cards)")

    graph = build_graph(cards, policy=app.config["EDGE_POLICY"])
    (data_dir / "graph.json").write_text(json.dumps(graph.to_dict()), encoding="utf-8")
    print(f"  graph.json ({len(graph.nodes)} nodes, {len(graph.edges)} edges)")

    for card in cards:
        (card_dir / card_filename(card.id)).write_text(
            json.dumps(generate_card_json(card, cards)), encoding="utf-8")
        (levels_dir / card_filename(card.id)).write_text(
            json.dumps(compute_distances(graph, card.id)), encoding="utf-8")
    print(f"  {len(cards)} cards rendered")

    (output / "index.html").write_text(patch_template(MAIN_TEMPLATE), encoding="utf-8")
    print("  index.html generated")

    (output / ".nojekyll").write_text("", encoding="utf-8")

    (output / "README.md").write_text(README, encoding="utf-8")

    print(f"\nDone! Static site is in: {output}")
    print(f"To test locally:  cd {output.name} && python3 -m http.server 8080")
    return output


if __name__ == "__main__":
    build()
