
import json
import re
from datetime import datetime
from pathlib import Path

from flask import Flask, jsonify, render_template_string, abort, request, current_app, Response
from werkzeug.utils import secure_filename
import markdown

from cards import CardStore, TAG_CATEGORIES, category_for_tag
from internal_links import resolve_links, extract_links, find_link_candidates, insert_link
from relgraph import EdgePolicy, KINDS, build_graph, compute_distances, visible_graph

app = Flask(__name__)

BASE = Path(__file__).resolve().parent

_CONFIG_PATH = BASE / "studycards.config.json"
_DEFAULTS = {
    "port": 8000,
    "host": "0.0.0.0",
    "read_only": False,
    "cards_file": "cards.json",
    "edge_policy": EdgePolicy.STRONGEST.value,
}

def _load_config() -> dict:
    cfg = dict(_DEFAULTS)
    if _CONFIG_PATH.is_file():
        try:
            with open(_CONFIG_PATH) as f:
                user = json.load(f)
            cfg.update(user)
        except (OSError, ValueError) as e:
            print(f"Warning: could not load {_CONFIG_PATH.name}: {e}")
    return cfg

_cfg = _load_config()

PORT = _cfg["port"]
HOST = _cfg["host"]

app.config.update(
    READ_ONLY=bool(_cfg["read_only"]),
    CARDS_FILE=str(BASE / _cfg["cards_file"]),
    EDGE_POLICY=_cfg["edge_policy"],
)


def _store() -> CardStore:
    return CardStore(current_app.config["CARDS_FILE"])


def _read_only():
    if current_app.config["READ_ONLY"]:
        return jsonify({"error": "Cards are read-only"}), 403
    return None


def _card_payload(card) -> dict:
    data = card.to_dict()
    data["tagCategories"] = {t: category_for_tag(t) for t in card.tags}
    return data


def render_markdown(text: str, cards) -> tuple[str, list[str]]:
    text, targets = resolve_links(text, cards, skip_code=True)
    html = markdown.markdown(text, extensions=["fenced_code", "tables", "sane_lists", "nl2br"])
    html = re.sub(
        r'<a href="(https?://[^"]+)"',
        r'<a href="\1" target="_blank" rel="noopener noreferrer"',
        html,
    )
    return html, targets


def _parse_kinds(raw: str | None):
    if raw is None:
        return None
    kinds = {k.strip() for k in raw.split(",") if k.strip()}
    unknown = kinds - set(KINDS)
    if unknown:
        abort(400, description=f"Unknown relationship kinds: {', '.join(sorted(unknown))}")
    return kinds


@app.route("/")
def index():
    return render_template_string(MAIN_TEMPLATE)


@app.route("/api/config")
def api_config():
    return jsonify({
        "read_only": current_app.config["READ_ONLY"],
        "kinds": list(KINDS),
    })


@app.route("/api/cards", methods=["GET", "POST"])
def api_cards():
    if request.method == "POST":
        return _api_cards_post()
    store = _store()
    q = request.args.get("q", "")
    cards = store.search(q)
    tags = [t for t in request.args.getlist("tag") if t]
    if tags:
        cards = store.filter_by_tags(tags, cards)
    reference = request.args.get("reference")
    if reference:
        cards = store.filter_by_reference(reference, cards)
    return jsonify([_card_payload(c) for c in cards])


def _api_cards_post():
    denied = _read_only()
    if denied:
        return denied
    body = request.get_json(silent=True)
    if not isinstance(body, dict):
        return jsonify({"error": "JSON object required"}), 400
    try:
        card = _store().add(body)
    except ValueError as e:
        return jsonify({"error": str(e)}), 400
    return jsonify(_card_payload(card)), 201


@app.route("/api/cards/<card_id>", methods=["GET", "PUT", "DELETE"])
def api_card(card_id):
    if request.method == "PUT":
        return _api_card_put(card_id)
    if request.method == "DELETE":
        return _api_card_delete(card_id)
    cards = _store().list_cards()
    card = next((c for c in cards if c.id == card_id), None)
    if card is None:
        abort(404)
    html, targets = render_markdown(card.content, cards)
    data = _card_payload(card)
    data.update({"html": html, "links": targets, "outgoing": extract_links(card.content)})
    return jsonify(data)


def _api_card_put(card_id: str):
    denied = _read_only()
    if denied:
        return denied
    body = request.get_json(silent=True)
    if not isinstance(body, dict):
        return jsonify({"error": "JSON object required"}), 400
    try:
        card = _store().update(card_id, body)
    except ValueError as e:
        return jsonify({"error": str(e)}), 400
    if card is None:
        abort(404)
    return jsonify(_card_payload(card))


def _api_card_delete(card_id: str):
    denied = _read_only()
    if denied:
        return denied
    if not _store().delete(card_id):
        abort(404)
    return jsonify({"ok": True})


@app.route("/api/cards/<card_id>/link-candidates")
def api_link_candidates(card_id):
    cards = _store().list_cards()
    card = next((c for c in cards if c.id == card_id), None)
    if card is None:
        abort(404)
    found = find_link_candidates(card.content, cards, exclude_card_id=card.id)
    return jsonify([
        {"id": c.card.id, "title": c.card.title,
         "occurrences": c.occurrences, "unlinked": c.unlinked}
        for c in found
    ])


@app.route("/api/cards/<card_id>/insert-link", methods=["POST"])
def api_insert_link(card_id):
    denied = _read_only()
    if denied:
        return denied
    body = request.get_json(silent=True) or {}
    title = body.get("title", "")
    if not isinstance(title, str) or not title.strip():
        return jsonify({"error": "Title is required"}), 400
    store = _store()
    card = store.get(card_id)
    if card is None:
        abort(404)
    content = insert_link(card.content, title)
    if content != card.content:
        card = store.update(card_id, {"content": content})
    return jsonify(_card_payload(card))


@app.route("/api/tags")
def api_tags():
    return jsonify({"tags": _store().all_tags(), "categories": TAG_CATEGORIES})


@app.route("/api/references")
def api_references():
    return jsonify(_store().all_references())


@app.route("/api/graph")
def api_graph():
    policy = request.args.get("policy", current_app.config["EDGE_POLICY"])
    try:
        policy = EdgePolicy(policy)
    except ValueError:
        abort(400, description=f"Unknown edge policy: {policy}")
    kinds = _parse_kinds(request.args.get("kinds"))
    center = request.args.get("center") or None
    max_level = request.args.get("max_level", type=int)

    full = build_graph(_store().list_cards(), policy=policy)
    shown = visible_graph(full, kinds=kinds, center_id=center, max_level=max_level)
    data = shown.to_dict()
    data["levels"] = compute_distances(full, center) if center else {}
    return jsonify(data)


@app.route("/api/export")
def api_export():
    stamp = datetime.now().strftime("%Y-%m-%d")
    return Response(
        _store().export_json(),
        mimetype="application/json",
        headers={"Content-Disposition": f"attachment; filename=studycards-{stamp}.json"},
    )


@app.route("/api/import", methods=["POST"])
def api_import():
    denied = _read_only()
    if denied:
        return denied
    if "file" in request.files:
        f = request.files["file"]
        filename = secure_filename(f.filename or "")
        if not filename or Path(filename).suffix.lower() != ".json":
            return jsonify({"ok": False, "error": "A .json file is required"}), 400
        text = f.read().decode("utf-8", errors="replace")
    else:
        text = request.get_data(as_text=True)
    result = _store().import_json(text)
    if not result.success:
        return jsonify({"ok": False, "error": result.message}), 400
    return jsonify({"ok": True, "message": result.message, "count": result.count})


MAIN_TEMPLATE = r"""<!DOCTYPE html>
<html lang="en">
<head>
<meta charset="utf-8">
<meta name="viewport" content="width=device-width, initial-scale=1">
<title>Study Cards</title>
<script src="https://unpkg.com/force-graph@1.43.5/dist/force-graph.min.js"></script>
<style>
*, *::before, *::after { box-sizing: border-box; margin: 0; padding: 0; }

:root {
  --bg-primary: #1a1a2e;
  --bg-secondary: #16162a;
  --bg-hover: rgba(134,112,255,.08);
  --bg-active: rgba(134,112,255,.15);
  --text: #e0def4;
  --text-muted: #908caa;
  --text-faint: #6e6a86;
  --accent: #8673ff;
  --accent-hover: #a48fff;
  --accent-dim: rgba(134,112,255,.35);
  --border: rgba(255,255,255,.06);
  --border-strong: rgba(255,255,255,.1);
  --tag-bg: rgba(134,112,255,.12);
  --sidebar-width: 280px;
  --font: -apple-system, BlinkMacSystemFont, 'Segoe UI', 'Inter', Roboto, sans-serif;
  --radius: 4px;
}

html, body { height: 100%; background: var(--bg-primary); color: var(--text); font-family: var(--font); font-size: 16px; line-height: 1.6; }
.app { display: flex; height: 100vh; overflow: hidden; }
.sidebar { width: var(--sidebar-width); background: var(--bg-secondary); display: flex; flex-direction: column; }
.sidebar-header { padding: 10px 14px; display: flex; gap: 6px; }
.sidebar-header input { flex: 1; background: var(--bg-primary); color: var(--text); border: 1px solid var(--border-strong); border-radius: var(--radius); padding: 4px 8px; }
.sidebar-btn { background: none; border: 1px solid var(--border-strong); border-radius: var(--radius); color: var(--text-muted); cursor: pointer; padding: 2px 8px; }
.sidebar-btn:hover { background: var(--bg-hover); color: var(--text); }
.card-list { overflow-y: auto; flex: 1; }
.card-item { padding: 6px 14px; cursor: pointer; color: var(--text-muted); font-size: 14px; }
.card-item:hover { background: var(--bg-hover); color: var(--text); }
.card-item.active { background: var(--bg-active); color: var(--accent-hover); }
.content-area { flex: 1; overflow-y: auto; padding: 24px 40px; }
.tag { display: inline-block; background: var(--tag-bg); border-radius: var(--radius); padding: 0 6px; margin-right: 4px; font-size: 12px; }
.internal-link { color: var(--accent-hover); cursor: pointer; }
.broken-link { color: #eb6f92; text-decoration: line-through; }
.suggestions { margin-top: 16px; font-size: 13px; color: var(--text-muted); }
textarea, .edit input { width: 100%; background: var(--bg-secondary); color: var(--text); border: 1px solid var(--border-strong); border-radius: var(--radius); padding: 6px; margin-bottom: 8px; font-family: var(--font); }
textarea { min-height: 260px; }
.graph-toolbar { display: flex; gap: 10px; align-items: center; font-size: 13px; color: var(--text-muted); margin-bottom: 8px; }
.graph-canvas-wrap { height: calc(100vh - 110px); background: #0e0e1e; }
.mutating { }
.read-only .mutating { display: none; }
</style>
</head>
<body>
<div class="app" id="app">
  <aside class="sidebar">
    <div class="sidebar-header">
      <input id="search" placeholder="Search cards">
      <button class="sidebar-btn mutating" id="newBtn" title="New card">+</button>
      <button class="sidebar-btn" id="graphBtn" title="Graph view">Graph</button>
    </div>
    <div class="card-list" id="cardList"></div>
  </aside>
  <main class="content-area" id="content"></main>
</div>
<script>
const STATIC_MODE = false;
const $ = (s) => document.querySelector(s);
const fileKey = (id) => Array.from(new TextEncoder().encode(id), (b) => b.toString(16).padStart(2, '0')).join('') + '.json';
const esc = (s) => String(s).replace(/[&<>"]/g, (c) => ({'&': '&amp;', '<': '&lt;', '>': '&gt;', '"': '&quot;'}[c]));
let readOnly = STATIC_MODE;
let currentId = null;
let snapshot = null;

async function getJSON(url, opts) {
  const res = await fetch(url, opts);
  if (!res.ok) throw new Error(url + ': ' + res.status);
  return res.json();
}

async function fetchCards(q) {
  if (!STATIC_MODE) return getJSON('/api/cards?q=' + encodeURIComponent(q || ''));
  if (!snapshot) snapshot = (await getJSON('data/cards.json')).cards;
  const lq = (q || '').toLowerCase();
  return snapshot.filter((c) => !lq || c.title.toLowerCase().includes(lq) ||
    c.content.toLowerCase().includes(lq) || c.tags.some((t) => t.toLowerCase().includes(lq)));
}

async function reloadList() {
  const cards = await fetchCards($('#search').value);
  $('#cardList').innerHTML = cards.map((c) =>
    '<div class="card-item' + (c.id === currentId ? ' active' : '') + '" data-id="' + esc(c.id) + '">' +
    esc(c.title || '(untitled)') + '</div>').join('');
}

async function loadCard(id) {
  currentId = id;
  const card = await getJSON(STATIC_MODE ? 'data/cards/' + fileKey(id) : '/api/cards/' + encodeURIComponent(id));
  let html = '<h1>' + esc(card.title || '(untitled)') + '</h1>' +
    '<div>' + card.tags.map((t) => '<span class="tag">' + esc(t) + '</span>').join('') + '</div>' +
    (card.references.length ? '<div class="tag-refs">' + card.references.map(esc).join(' / ') + '</div>' : '') +
    '<article>' + card.html + '</article>' +
    '<div class="mutating"><button class="sidebar-btn" id="editBtn">Edit</button> ' +
    '<button class="sidebar-btn" id="deleteBtn">Delete</button></div>' +
    '<div class="suggestions mutating" id="suggestions"></div>';
  $('#content').innerHTML = html;
  if (!readOnly) {
    $('#editBtn').onclick = () => editCard(card);
    $('#deleteBtn').onclick = async () => {
      await fetch('/api/cards/' + encodeURIComponent(id), {method: 'DELETE'});
      currentId = null; $('#content').innerHTML = ''; reloadList();
    };
    const found = await getJSON('/api/cards/' + encodeURIComponent(id) + '/link-candidates');
    $('#suggestions').innerHTML = found.map((c) =>
      '<button class="sidebar-btn" data-link="' + esc(c.title) + '">Link ' + esc(c.title) + ' (' + c.unlinked + ')</button>').join(' ');
  }
  reloadList();
}

function editCard(card) {
  $('#content').innerHTML = '<div class="edit">' +
    '<input id="fTitle" placeholder="Title" value="' + esc(card.title) + '">' +
    '<textarea id="fContent">' + esc(card.content) + '</textarea>' +
    '<input id="fTags" placeholder="Tags, comma separated" value="' + esc(card.tags.join(', ')) + '">' +
    '<input id="fRefs" placeholder="References, comma separated" value="' + esc(card.references.join(', ')) + '">' +
    '<input id="fRelated" placeholder="Related card ids" value="' + esc(card.relatedCardIds.join(', ')) + '">' +
    '<button class="sidebar-btn" id="saveBtn">Save</button></div>';
  const list = (s) => s.split(',').map((x) => x.trim()).filter(Boolean);
  $('#saveBtn').onclick = async () => {
    const body = {title: $('#fTitle').value, content: $('#fContent').value,
      tags: list($('#fTags').value), references: list($('#fRefs').value), relatedCardIds: list($('#fRelated').value)};
    const res = card.id
      ? await getJSON('/api/cards/' + encodeURIComponent(card.id), {method: 'PUT', headers: {'Content-Type': 'application/json'}, body: JSON.stringify(body)})
      : await getJSON('/api/cards', {method: 'POST', headers: {'Content-Type': 'application/json'}, body: JSON.stringify(body)});
    loadCard(res.id);
  };
}

function applyGraphFilters(graph, kinds, levels, maxLevel) {
  let edges = graph.edges.filter((e) => kinds.has(e.kind));
  const ids = new Set(edges.flatMap((e) => [e.sourceId, e.targetId]));
  let nodes = graph.nodes.filter((n) => ids.has(n.id));
  if (levels && maxLevel !== null) {
    nodes = nodes.filter((n) => n.id in levels && levels[n.id] <= maxLevel);
    const keep = new Set(nodes.map((n) => n.id));
    edges = edges.filter((e) => keep.has(e.sourceId) && keep.has(e.targetId));
  }
  return {nodes, edges};
}

async function fetchGraph(kinds, center, maxLevel) {
  if (!STATIC_MODE) {
    let url = '/api/graph?kinds=' + [...kinds].join(',');
    if (center) url += '&center=' + encodeURIComponent(center);
    if (center && maxLevel !== null) url += '&max_level=' + maxLevel;
    return getJSON(url);
  }
  const full = await getJSON('data/graph.json');
  const levels = center ? await getJSON('data/levels/' + fileKey(center)) : null;
  return Object.assign(applyGraphFilters(full, kinds, levels, center ? maxLevel : null), {levels: levels || {}});
}

async function openGraphView() {
  currentId = null;
  $('#content').innerHTML = '<div class="graph-toolbar">' +
    ['explicit', 'reference', 'tag'].map((k) => '<label><input type="checkbox" class="kind" value="' + k + '" checked> ' + k + '</label>').join('') +
    '<label>Radius <select id="maxLevel"><option value="">all</option><option>1</option><option>2</option><option>3</option><option>4</option></select></label>' +
    '<span id="graphStats"></span></div><div class="graph-canvas-wrap" id="graphWrap"></div>';
  let center = null;
  const fg = ForceGraph()($('#graphWrap'))
    .nodeId('id').nodeLabel('displayName').nodeVal('size').nodeColor('color')
    .linkSource('sourceId').linkTarget('targetId').linkColor('color').linkWidth('width').linkLabel('label')
    .onNodeClick((node) => { center = node.id; redraw(); })
    .onNodeRightClick((node) => loadCard(node.id));
  async function redraw() {
    const kinds = new Set([...document.querySelectorAll('.kind:checked')].map((el) => el.value));
    const raw = $('#maxLevel').value;
    const graph = await fetchGraph(kinds, center, raw === '' ? null : Number(raw));
    $('#graphStats').textContent = graph.nodes.length + ' cards, ' + graph.edges.length + ' links';
    fg.graphData({nodes: graph.nodes, links: graph.edges});
  }
  document.querySelectorAll('.kind, #maxLevel').forEach((el) => el.addEventListener('change', redraw));
  redraw();
}

$('#cardList').addEventListener('click', (e) => { const el = e.target.closest('.card-item'); if (el) loadCard(el.dataset.id); });
$('#content').addEventListener('click', async (e) => {
  const link = e.target.closest('.internal-link');
  if (link) { e.preventDefault(); loadCard(link.dataset.cardId); return; }
  const btn = e.target.closest('[data-link]');
  if (btn && currentId) {
    await getJSON('/api/cards/' + encodeURIComponent(currentId) + '/insert-link',
      {method: 'POST', headers: {'Content-Type': 'application/json'}, body: JSON.stringify({title: btn.dataset.link})});
    loadCard(currentId);
  }
});
$('#search').addEventListener('input', reloadList);
$('#graphBtn').addEventListener('click', openGraphView);
$('#newBtn').addEventListener('click', () => editCard({title: '', content: '', tags: [], references: [], relatedCardIds: []}));

(async () => {
  if (!STATIC_MODE) readOnly = (await getJSON('/api/config')).read_only;
  if (readOnly) $('#app').classList.add('read-only');
  reloadList();
})();
</script>
</body>
</html>
"""


if __name__ == "__main__":
    import socket
    hostname = socket.gethostname()
    local_ip = socket.gethostbyname(hostname)
    print(f"Serving cards: {app.config['CARDS_FILE']}")
    if app.config["READ_ONLY"]:
        print("Read-only mode: editing is disabled")
    print(f"Open http://localhost:{PORT}    (this machine)")
    print(f"     http://{local_ip}:{PORT}  (other devices on network)")
    app.run(host=HOST, port=PORT)
