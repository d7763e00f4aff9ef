"""Flask web application for the target manager."""
from __future__ import annotations

from flask import Flask, Response, jsonify, render_template_string, request

from .enginelib.errors import TargetManagerError
from .enginelib.marker_record import RANK_COLORS
from .service import TargetManagerService


def create_app(service: TargetManagerService) -> Flask:
    app = Flask(__name__)
    app.config["TARGET_SERVICE"] = service

    @app.errorhandler(TargetManagerError)
    @app.errorhandler(ValueError)
    @app.errorhandler(KeyError)
    def handle_bad_request(error):
        return jsonify({"error": str(error)}), 400

    def target_payload(marker):
        payload = marker.to_dict()
        payload["displayName"] = marker.display_name
        payload["color"] = RANK_COLORS[marker.effective_rank]["color"]
        return payload

    @app.route("/")
    def index():
        return render_template_string(_DASHBOARD_HTML)

    @app.get("/api/status")
    def api_status():
        return jsonify(service.status_payload())

    # ----------------------- targets -----------------------
    @app.get("/api/targets")
    def api_targets():
        rank = request.args.get("rank", type=int)
        region = request.args.get("region") or None
        markers = service.list_targets(rank=rank, region=region)
        return jsonify([target_payload(marker) for marker in markers])

    @app.post("/api/targets")
    def api_add_target():
        payload = request.get_json(silent=True) or {}
        if "lat" not in payload or "lng" not in payload:
            marker = service.add_current()
        else:
            marker = service.add_at(
                float(payload["lat"]),
                float(payload["lng"]),
                name=payload.get("name") or "Marked Location",
                note=payload.get("note", ""),
                rank=int(payload.get("rank", 1)),
                region=payload.get("region"),
            )
        return jsonify(target_payload(marker)), 201

    @app.patch("/api/targets/<marker_id>")
    def api_update_target(marker_id: str):
        payload = request.get_json(force=True) or {}
        updated = service.update_target(marker_id, **payload)
        if updated is None:
            return jsonify({"error": f"unknown target {marker_id}"}), 404
        return jsonify(target_payload(updated))

    @app.delete("/api/targets/<marker_id>")
    def api_remove_target(marker_id: str):
        if not service.remove_target(marker_id):
            return jsonify({"error": f"unknown target {marker_id}"}), 404
        return jsonify({"ok": True})

    @app.get("/api/regions")
    def api_regions():
        return jsonify(service.regions())

    @app.post("/api/search")
    def api_search():
        payload = request.get_json(force=True) or {}
        query = payload.get("query", "")
        if not query.strip():
            return jsonify({"error": "query is required"}), 400
        marker = service.add_from_search(query)
        if marker is None:
            return jsonify({"error": "no location found"}), 404
        return jsonify(target_payload(marker)), 201

    # ----------------------- import / export -----------------------
    @app.get("/api/export/<fmt>")
    def api_export(fmt: str):
        export = service.export(fmt)
        return Response(
            export.content,
            mimetype=export.mime_type,
            headers={"Content-Disposition": f"attachment; filename={export.filename}"},
        )

    @app.post("/api/import")
    def api_import():
        storage = request.files.get("file")
        if storage is not None:
            filename = storage.filename or "upload.json"
            content = storage.stream.read().decode("utf-8")
        else:
            payload = request.get_json(silent=True) or {}
            filename = payload.get("filename") or payload.get("format")
            content = payload.get("content", "")
            if not filename:
                return jsonify({"error": "filename or format is required"}), 400
        report = service.import_content(filename, content)
        return jsonify(report.summary())

    @app.get("/api/diff")
    def api_diff():
        return jsonify(service.diff_last())

    # ----------------------- tracking -----------------------
    @app.get("/api/tracking")
    def api_tracking():
        return jsonify(service.tracking_payload())

    @app.post("/api/tracking/start")
    def api_tracking_start():
        started = service.start_tracking()
        if not started and not service.session.is_active:
            return jsonify({"error": "geolocation unavailable", **service.tracking_payload()}), 409
        return jsonify(service.tracking_payload())

    @app.post("/api/tracking/stop")
    def api_tracking_stop():
        service.stop_tracking()
        return jsonify(service.tracking_payload())

    @app.post("/api/tracking/clear")
    def api_tracking_clear():
        service.clear_path()
        return jsonify(service.tracking_payload())

    @app.post("/api/tracking/refresh")
    def api_tracking_refresh():
        position = service.refresh_position()
        return jsonify(position.to_dict())

    @app.post("/api/position")
    def api_position():
        payload = request.get_json(force=True) or {}
        if payload.get("error"):
            service.push_position_error(str(payload["error"]))
        else:
            service.push_position(float(payload["lat"]), float(payload["lng"]))
        return jsonify(service.tracking_payload())

    @app.get("/api/logs")
    def api_logs():
        limit = int(request.args.get("limit", 50))
        return jsonify(service.recent_logs(limit))

    return app


_DASHBOARD_HTML = """
<!doctype html>
<html lang="en">
  <head>
    <meta charset="utf-8" />
    <title>Target Manager</title>
    <style>
      body { font-family: system-ui, sans-serif; margin: 2rem; background: #0f172a; color: #e2e8f0; }
      .grid { display: grid; grid-template-columns: repeat(auto-fit, minmax(280px, 1fr)); gap: 1.5rem; }
      .card { background: #1e293b; padding: 1.5rem; border-radius: 1rem; }
      input, select { padding: 0.5rem; border-radius: 0.5rem; border: 1px solid #334155; background: #0f172a; color: #f8fafc; }
      button { padding: 0.5rem 1.2rem; border-radius: 999px; border: none; background: linear-gradient(135deg, #22d3ee, #6366f1); color: #0f172a; font-weight: 700; cursor: pointer; margin-top: 0.5rem; }
      .target { display: flex; justify-content: space-between; gap: 0.5rem; padding: 0.35rem 0; border-bottom: 1px solid #334155; }
      .dot { display: inline-block; width: 0.7rem; height: 0.7rem; border-radius: 50%; margin-right: 0.4rem; }
      #logs { max-height: 200px; overflow-y: auto; font-family: ui-monospace, monospace; font-size: 0.8rem; }
    </style>
  </head>
  <body>
    <h1>Target Manager</h1>
    <div class="grid">
      <div class="card">
        <h2>Targets <span id="count"></span></h2>
        <select id="rank" onchange="fetchTargets()">
          <option value="">All ranks</option>
          <option value="1">Rank 1</option><option value="2">Rank 2</option>
          <option value="3">Rank 3</option><option value="4">Rank 4</option>
        </select>
        <select id="region" onchange="fetchTargets()"></select>
        <div id="targets"></div>
        <button onclick="addCurrent()">Mark current position</button>
      </div>
      <div class="card">
        <h2>Search</h2>
        <input id="query" placeholder="Place name" />
        <button onclick="search()">Search &amp; add</button>
        <h2>Import / Export</h2>
        <input type="file" id="file" accept=".json,.csv" />
        <button onclick="importFile()">Import</button>
        <div><a href="/api/export/structured">Export JSON</a> · <a href="/api/export/tabular">Export CSV</a></div>
      </div>
      <div class="card">
        <h2>Tracking</h2>
        <div id="tracking"></div>
        <button onclick="toggleTracking()">Start / stop</button>
        <button onclick="post('/api/tracking/clear').then(fetchTracking)">Clear path</button>
        <h2>Events</h2>
        <div id="logs"></div>
      </div>
    </div>
    <script>
      let watchId = null;
      async function post(url, body) {
        const response = await fetch(url, {
          method: 'POST',
          headers: { 'Content-Type': 'application/json' },
          body: JSON.stringify(body || {})
        });
        return response.json();
      }
      async function fetchTargets() {
        const params = new URLSearchParams();
        const rank = document.getElementById('rank').value;
        const region = document.getElementById('region').value;
        if (rank) params.set('rank', rank);
        if (region) params.set('region', region);
        const targets = await (await fetch('/api/targets?' + params)).json();
        document.getElementById('count').textContent = `(${targets.length})`;
        const list = document.getElementById('targets');
        list.replaceChildren(...targets.map((target, index) => {
          const row = document.createElement('div');
          row.className = 'target';
          const label = document.createElement('span');
          const dot = document.createElement('span');
          dot.className = 'dot';
          dot.style.background = target.color;
          label.append(dot, document.createTextNode(
            'TARGET ' + (index + 1) + ' · ' + target.displayName + ' · ' + target.region));
          const remove = document.createElement('a');
          remove.href = '#';
          remove.textContent = 'remove';
          remove.dataset.id = target.id;
          remove.addEventListener('click', event => {
            event.preventDefault();
            removeTarget(event.currentTarget.dataset.id);
          });
          row.append(label, remove);
          return row;
        }));
      }
      async function fetchRegions() {
        const regions = await (await fetch('/api/regions')).json();
        const select = document.getElementById('region');
        const current = select.value;
        select.replaceChildren(new Option('All regions', ''));
        for (const region of regions) {
          select.add(new Option(region, region, false, region === current));
        }
      }
      async function fetchTracking() {
        const data = await (await fetch('/api/tracking')).json();
        const pos = data.current_position;
        document.getElementById('tracking').textContent =
          `${data.state.toUpperCase()} · ${pos.lat.toFixed(5)}, ${pos.lng.toFixed(5)} · ${data.path.length} samples`;
      }
      async function fetchLogs() {
        const logs = await (await fetch('/api/logs?limit=20')).json();
        document.getElementById('logs').replaceChildren(...logs.map(entry => {
          const line = document.createElement('div');
          line.textContent = entry.type + ' ' + JSON.stringify(entry.payload);
          return line;
        }));
      }
      async function refresh() { await fetchRegions(); await fetchTargets(); fetchTracking(); fetchLogs(); }
      async function addCurrent() { await post('/api/targets'); refresh(); }
      async function removeTarget(id) { await fetch('/api/targets/' + encodeURIComponent(id), { method: 'DELETE' }); refresh(); }
      async function search() {
        await post('/api/search', { query: document.getElementById('query').value });
        refresh();
      }
      async function importFile() {
        const input = document.getElementById('file');
        if (!input.files.length) return alert('Select a file');
        const body = new FormData();
        body.append('file', input.files[0]);
        const report = await (await fetch('/api/import', { method: 'POST', body })).json();
        alert(`Imported ${report.accepted} · skipped ${report.skipped}`);
        refresh();
      }
      async function toggleTracking() {
        const data = await (await fetch('/api/tracking')).json();
        if (data.state === 'active') {
          if (watchId !== null) navigator.geolocation.clearWatch(watchId);
          watchId = null;
          await post('/api/tracking/stop');
        } else {
          const started = await post('/api/tracking/start');
          if (started.state === 'active' && navigator.geolocation) {
            watchId = navigator.geolocation.watchPosition(
              p => post('/api/position', { lat: p.coords.latitude, lng: p.coords.longitude }).then(fetchTracking),
              e => post('/api/position', { error: e.message }),
              { enableHighAccuracy: true, timeout: 5000, maximumAge: 0 }
            );
          }
        }
        fetchTracking();
      }
      refresh();
    </script>
  </body>
</html>
"""
