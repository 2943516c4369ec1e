from __future__ import annotations

import threading
from dataclasses import dataclass, field
from pathlib import Path
from urllib.parse import quote

from fastapi import Body, FastAPI, HTTPException, Query, Request
from fastapi.responses import HTMLResponse, JSONResponse, Response

from .dictionary import (
    DictionaryImportError,
    DictionaryStore,
    ValidationError,
    count_label,
    filter_entries,
    list_status,
)
from .page import (
    DocumentHost,
    PageApplier,
    PageLoadError,
    apply_with_status,
    restore_with_status,
)
from .storage import JsonFileStorage, StorageError, default_storage_path
from .transfer import (
    EXPORT_STATUS,
    IMPORT_FAILED_STATUS,
    export_filename,
    export_text,
    import_status,
    parse_import_text,
)
from .web_assets import MOJIKAE_FAVICON_URL


@dataclass(slots=True)
class WebConfig:
    state_dir: Path | None = None
    base_path: Path | None = None
    pages: list[str] = field(default_factory=list)


INDEX_HTML = """<!DOCTYPE html>
<html lang="ja">
<head>
  <meta charset="utf-8">
  <title>mojikae</title>
  <meta name="viewport" content="width=device-width, initial-scale=1">
  <link rel="icon" href="__FAVICON__">
  <style>
    :root {
      color-scheme: dark;
      font-family: -apple-system, BlinkMacSystemFont, "Helvetica Neue", "Hiragino Sans", sans-serif;
      --bg: #090b12;
      --panel: #141724;
      --panel-alt: #1b1f32;
      --text: #f5f5f5;
      --muted: #9aa0b5;
      --accent: #3b82f6;
      --danger: #f87171;
      --radius: 14px;
    }
    body { margin: 0; background: var(--bg); color: var(--text); }
    header { padding: 1rem 1.4rem 0.6rem; display: flex; align-items: baseline; gap: 1rem; }
    header h1 { margin: 0; font-size: 1.3rem; }
    #count { color: var(--muted); }
    main { padding: 0 1.4rem 2rem; display: flex; flex-direction: column; gap: 1rem; }
    section.panel { background: var(--panel); border-radius: var(--radius); padding: 0.9rem 1.1rem; }
    .row { display: flex; gap: 0.5rem; align-items: center; flex-wrap: wrap; }
    input, select { background: var(--panel-alt); color: var(--text); border: 1px solid #2a3150; border-radius: 8px; padding: 0.4rem 0.6rem; }
    #cipher-input { width: 4rem; }
    button { background: var(--accent); color: white; border: none; border-radius: 8px; padding: 0.4rem 0.8rem; cursor: pointer; }
    button:disabled { opacity: 0.4; cursor: default; }
    button.icon-btn { background: transparent; color: var(--muted); padding: 0.2rem 0.4rem; }
    button.icon-btn.delete:hover { color: var(--danger); }
    button.icon-btn.save:hover { color: var(--accent); }
    #list { max-height: 55vh; overflow-y: auto; }
    .list-item { display: flex; gap: 0.6rem; align-items: center; padding: 0.3rem 0; border-bottom: 1px solid #1f2540; }
    .cipher { font-size: 1.2rem; min-width: 2rem; text-align: center; }
    .arrow { color: var(--muted); }
    .decoded { flex: 1; }
    .actions-right { display: flex; gap: 0.2rem; }
    #status { color: var(--muted); min-height: 1.2rem; }
  </style>
</head>
<body>
  <header>
    <h1>mojikae</h1>
    <span id="count"></span>
  </header>
  <main>
    <section class="panel">
      <div class="row">
        <input id="cipher-input" placeholder="暗号">
        <span class="arrow">→</span>
        <input id="decoded-input" placeholder="解読">
        <button id="add-btn" disabled>追加</button>
      </div>
    </section>
    <section class="panel">
      <div class="row">
        <select id="page-select"></select>
        <input id="page-origin" placeholder="https://... / path/to/page.html">
        <button id="open-btn">開く</button>
        <a id="page-link" target="_blank">表示</a>
      </div>
      <div class="row" style="margin-top:0.6rem">
        <button id="apply-btn">適用</button>
        <button id="restore-btn">元に戻す</button>
        <button id="export-btn">エクスポート</button>
        <button id="import-btn">インポート</button>
        <input id="import-file" type="file" accept="application/json,.json" hidden>
      </div>
    </section>
    <section class="panel">
      <input id="search-input" placeholder="検索">
      <div id="list"></div>
    </section>
    <div id="status"></div>
  </main>
  <script>
    const $ = (id) => document.getElementById(id);
    const cipherInput = $('cipher-input');
    const decodedInput = $('decoded-input');
    const addBtn = $('add-btn');
    const searchInput = $('search-input');
    const listEl = $('list');
    const statusEl = $('status');
    const pageSelect = $('page-select');

    async function api(path, options = {}) {
      const resp = await fetch(path, options);
      const payload = await resp.json().catch(() => ({}));
      if (!resp.ok) throw new Error(payload.detail || resp.statusText);
      return payload;
    }

    function el(tag, cls, text) {
      const node = document.createElement(tag);
      if (cls) node.className = cls;
      if (text !== undefined) node.textContent = text;
      return node;
    }

    async function renderList() {
      const q = searchInput.value.trim();
      const data = await api('/api/dict?q=' + encodeURIComponent(q));
      $('count').textContent = data.count_label;
      listEl.innerHTML = '';
      for (const [cipher, decoded] of data.entries) {
        const item = el('div', 'list-item');
        const decodedSpan = el('span', 'decoded', decoded);
        const actions = el('div', 'actions-right');
        const editBtn = el('button', 'icon-btn edit', '\\u270e');
        const delBtn = el('button', 'icon-btn delete', '\\u2715');
        actions.append(editBtn, delBtn);
        item.append(el('span', 'cipher', cipher), el('span', 'arrow', '→'), decodedSpan, actions);
        editBtn.addEventListener('click', () => {
          const input = el('input', 'edit-input');
          input.value = decoded;
          decodedSpan.replaceWith(input);
          input.focus();
          input.select();
          const save = async () => {
            const val = input.value.trim();
            if (val) await api('/api/dict', {
              method: 'POST',
              headers: {'Content-Type': 'application/json'},
              body: JSON.stringify({cipher, decoded: val}),
            });
            renderList();
          };
          const saveBtn = el('button', 'icon-btn save', '\\u2713');
          const cancelBtn = el('button', 'icon-btn cancel', '\\u2715');
          saveBtn.addEventListener('click', save);
          cancelBtn.addEventListener('click', () => renderList());
          actions.replaceChildren(saveBtn, cancelBtn);
          input.addEventListener('keydown', (e) => {
            if (e.key === 'Enter') save();
            if (e.key === 'Escape') renderList();
          });
        });
        delBtn.addEventListener('click', async () => {
          await api('/api/dict/' + encodeURIComponent(cipher), {method: 'DELETE'});
          renderList();
        });
        listEl.appendChild(item);
      }
      statusEl.textContent = data.status;
    }

    function checkInputs() {
      addBtn.disabled = !(cipherInput.value.trim() && decodedInput.value.trim());
    }
    cipherInput.addEventListener('input', checkInputs);
    decodedInput.addEventListener('input', checkInputs);

    addBtn.addEventListener('click', async () => {
      const cipher = cipherInput.value.trim();
      const decoded = decodedInput.value.trim();
      if (!cipher || !decoded) return;
      await api('/api/dict', {
        method: 'POST',
        headers: {'Content-Type': 'application/json'},
        body: JSON.stringify({cipher, decoded}),
      });
      cipherInput.value = '';
      decodedInput.value = '';
      addBtn.disabled = true;
      cipherInput.focus();
      renderList();
    });
    decodedInput.addEventListener('keydown', (e) => {
      if (e.key === 'Enter' && !addBtn.disabled) addBtn.click();
    });
    searchInput.addEventListener('input', renderList);

    $('export-btn').addEventListener('click', async () => {
      const resp = await fetch('/api/dict/export');
      const blob = await resp.blob();
      const match = /filename="([^"]+)"/.exec(resp.headers.get('Content-Disposition') || '');
      const a = document.createElement('a');
      a.href = URL.createObjectURL(blob);
      a.download = match ? match[1] : 'decoder_dict.json';
      a.click();
      URL.revokeObjectURL(a.href);
      statusEl.textContent = resp.headers.get('X-Status') ? decodeURIComponent(resp.headers.get('X-Status')) : '';
    });
    $('import-btn').addEventListener('click', () => $('import-file').click());
    $('import-file').addEventListener('change', async (e) => {
      const file = e.target.files[0];
      if (!file) return;
      const data = await api('/api/dict/import', {method: 'POST', body: await file.text()});
      await renderList();
      statusEl.textContent = data.status;
      e.target.value = '';
    });

    async function renderPages() {
      const data = await api('/api/pages');
      pageSelect.innerHTML = '';
      for (const page of data.pages) {
        const opt = el('option', '', page.title);
        opt.value = page.id;
        opt.selected = page.id === data.active;
        pageSelect.appendChild(opt);
      }
      $('page-link').href = data.active ? '/pages/' + data.active : '#';
    }
    pageSelect.addEventListener('change', async () => {
      await api('/api/pages/' + pageSelect.value + '/select', {method: 'POST'});
      renderPages();
    });
    $('open-btn').addEventListener('click', async () => {
      const origin = $('page-origin').value.trim();
      if (!origin) return;
      try {
        await api('/api/pages', {
          method: 'POST',
          headers: {'Content-Type': 'application/json'},
          body: JSON.stringify({origin}),
        });
        $('page-origin').value = '';
      } catch (err) {
        statusEl.textContent = err.message;
      }
      renderPages();
    });
    $('apply-btn').addEventListener('click', async () => {
      statusEl.textContent = (await api('/api/apply', {method: 'POST'})).status;
    });
    $('restore-btn').addEventListener('click', async () => {
      statusEl.textContent = (await api('/api/restore', {method: 'POST'})).status;
    });

    renderList();
    renderPages();
  </script>
</body>
</html>
""".replace("__FAVICON__", MOJIKAE_FAVICON_URL)


def _page_payload(page) -> dict[str, object]:
    return {
        "id": page.id,
        "origin": page.origin,
        "title": page.title,
        "scriptable": page.scriptable,
    }


def create_app(config: WebConfig) -> FastAPI:
    storage_path = default_storage_path(config.state_dir.expanduser() if config.state_dir else None)
    store = DictionaryStore.open(JsonFileStorage(storage_path), base_path=config.base_path)
    host = DocumentHost()
    for origin in config.pages:
        host.open(origin)

    app = FastAPI(title="mojikae")
    app.state.config = config
    app.state.store = store
    app.state.host = host
    store_lock = threading.Lock()
    app.state.store_lock = store_lock

    def _locked_merged() -> dict[str, str]:
        with store_lock:
            return store.merged()

    applier = PageApplier(host, _locked_merged)
    app.state.applier = applier

    def _dict_payload(query: str) -> dict[str, object]:
        merged = store.merged()
        entries = filter_entries(merged, query)
        return {
            "entries": [[cipher, decoded] for cipher, decoded in entries],
            "count": len(merged),
            "count_label": count_label(len(merged)),
            "status": list_status(len(entries), len(merged), bool(query)),
        }

    @app.get("/", response_class=HTMLResponse)
    def index() -> str:
        return INDEX_HTML

    @app.get("/api/dict")
    def api_dict(q: str = Query("")) -> JSONResponse:
        with store_lock:
            payload = _dict_payload(q.strip())
        return JSONResponse(payload)

    @app.post("/api/dict")
    def api_set_entry(payload: dict[str, object] = Body(...)) -> JSONResponse:
        if not isinstance(payload, dict):
            raise HTTPException(status_code=400, detail="Invalid payload.")
        cipher = payload.get("cipher")
        decoded = payload.get("decoded")
        if not isinstance(cipher, str) or not isinstance(decoded, str):
            raise HTTPException(status_code=400, detail="cipher and decoded must be strings.")
        with store_lock:
            try:
                store.set_entry(cipher, decoded)
            except ValidationError as exc:
                raise HTTPException(status_code=400, detail=str(exc)) from exc
            except StorageError as exc:
                raise HTTPException(status_code=503, detail=str(exc)) from exc
            result = _dict_payload("")
        return JSONResponse(result)

    @app.delete("/api/dict/{cipher:path}")
    def api_remove_entry(cipher: str) -> JSONResponse:
        with store_lock:
            try:
                removed = store.remove_entry(cipher)
            except StorageError as exc:
                raise HTTPException(status_code=503, detail=str(exc)) from exc
            result = _dict_payload("")
        result["removed"] = removed
        return JSONResponse(result)

    @app.post("/api/dict/import")
    async def api_import(request: Request) -> JSONResponse:
        raw = await request.body()
        try:
            entries = parse_import_text(raw.decode("utf-8"))
        except (UnicodeDecodeError, DictionaryImportError):
            return JSONResponse({"imported": 0, "status": IMPORT_FAILED_STATUS})
        with store_lock:
            try:
                count = store.import_entries(entries)
            except StorageError:
                return JSONResponse({"imported": 0, "status": IMPORT_FAILED_STATUS})
        return JSONResponse({"imported": count, "status": import_status(count)})

    @app.get("/api/dict/export")
    def api_export() -> Response:
        with store_lock:
            merged = store.merged()
        filename = export_filename()
        return Response(
            content=export_text(merged),
            media_type="application/json",
            headers={
                "Content-Disposition": f'attachment; filename="{filename}"',
                "X-Status": quote(EXPORT_STATUS),
            },
        )

    @app.get("/api/pages")
    async def api_pages() -> JSONResponse:
        active = await host.active_target()
        return JSONResponse(
            {
                "pages": [_page_payload(page) for page in host.pages()],
                "active": active,
            }
        )

    @app.post("/api/pages")
    def api_open_page(payload: dict[str, object] = Body(...)) -> JSONResponse:
        origin = payload.get("origin") if isinstance(payload, dict) else None
        if not isinstance(origin, str) or not origin.strip():
            raise HTTPException(status_code=400, detail="origin is required.")
        try:
            page = host.open(origin)
        except PageLoadError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        return JSONResponse(_page_payload(page))

    @app.post("/api/pages/{page_id}/select")
    def api_select_page(page_id: str) -> JSONResponse:
        try:
            page = host.select(page_id)
        except KeyError as exc:
            raise HTTPException(status_code=404, detail="Page not found") from exc
        return JSONResponse(_page_payload(page))

    @app.get("/pages/{page_id}", response_class=HTMLResponse)
    def page_view(page_id: str) -> HTMLResponse:
        try:
            html = host.render(page_id)
        except KeyError as exc:
            raise HTTPException(status_code=404, detail="Page not found") from exc
        return HTMLResponse(html)

    @app.post("/api/apply")
    async def api_apply(target: str | None = Query(None)) -> JSONResponse:
        status = await apply_with_status(applier, target)
        return JSONResponse({"status": status})

    @app.post("/api/restore")
    async def api_restore(target: str | None = Query(None)) -> JSONResponse:
        status = await restore_with_status(applier, target)
        return JSONResponse({"status": status})

    return app


__all__ = ["WebConfig", "create_app"]
