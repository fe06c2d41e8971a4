"""
DataLens - CSV exploration dashboard
Web interface for loading, filtering, sorting, exporting and highlighting
the threads / non-threads CSV datasets
"""

import os
import sys
import logging
import secrets
import threading
import time
from datetime import datetime
from io import BytesIO

from flask import Flask, render_template_string, request, jsonify, send_file, redirect, session

import config
from csv_codec import parse_csv, serialize_csv
from errors import CsvParseError, DataLensError, NetworkError, StorePermissionError
from table_view import DATASETS, DATASET_THREADS, DATASET_NON_THREADS, ViewSession, row_details
from services import auth
from services.csv_store import CsvStore, init_firebase
from services.highlight_ai import AiHighlighter
from services.users_api import UsersApiClient

# Configure logging
logging.basicConfig(
    level=getattr(logging, config.LOG_LEVEL, logging.INFO),
    format='%(asctime)s [%(levelname)s] %(message)s',
    handlers=[logging.StreamHandler(sys.stdout)]
)
logger = logging.getLogger(__name__)

# Firestore holds the raw CSV documents; everything else works without it
try:
    init_firebase(config.FIREBASE_CONFIG)
except Exception as e:
    logger.warning(f"Firebase setup failed: {e}. Document store disabled.")

csv_store = CsvStore(collection=config.CSV_COLLECTION)
users_client = UsersApiClient(config.USERS_API_URL, timeout=config.API_TIMEOUT_SECONDS)
highlighter = AiHighlighter(api_key=config.ANTHROPIC_API_KEY, model=config.HIGHLIGHT_MODEL)

# Local files served as the default datasets
DATA_FILES = {
    DATASET_THREADS: 'threads.csv',
    DATASET_NON_THREADS: 'nonthreads.csv',
}

app = Flask(__name__)

# Core configuration
app.config['MAX_CONTENT_LENGTH'] = config.MAX_UPLOAD_SIZE_MB * 1024 * 1024
app.config['SECRET_KEY'] = config.SECRET_KEY

# Session security settings
app.config['SESSION_COOKIE_SECURE'] = config.IS_PRODUCTION  # HTTPS only in production
app.config['SESSION_COOKIE_HTTPONLY'] = True
app.config['SESSION_COOKIE_SAMESITE'] = 'Lax'
app.config['PERMANENT_SESSION_LIFETIME'] = config.VIEW_TTL_SECONDS

logger.info("Starting DataLens - CSV exploration dashboard")
logger.info(f"Environment: {config.FLASK_ENV}")
logger.info(f"MAX_CONTENT_LENGTH: {app.config['MAX_CONTENT_LENGTH']} bytes")
logger.info(f"Highlight mode: {config.HIGHLIGHT_MODE}")
logger.info(f"User API: {config.USERS_API_URL}")

# Dashboard state per browser session, in memory only (session _id -> ViewSession)
view_sessions = {}
view_lock = threading.Lock()


@app.before_request
def ensure_session_id():
    if '_id' not in session:
        session['_id'] = secrets.token_hex(16)
        session.permanent = True
        logger.debug(f"Created new session ID: {session['_id']}")


@app.before_request
def enforce_route_guard():
    """Evaluate the route guard once per request"""
    state = auth.SessionState.from_session(session)
    decision = auth.guard_route(request.path, state)
    if decision.allow:
        return None
    # fetch() callers expect JSON, never a redirect to an HTML page
    if request.path.startswith('/api/') or request.method != 'GET':
        if decision.redirect_to == auth.LOGIN_ROUTE:
            return jsonify({"error": "Authentication required"}), 401
        return jsonify({"error": "Already signed in", "redirect": decision.redirect_to}), 409
    return redirect(decision.redirect_to)


@app.after_request
def add_security_headers(response):
    """Add security headers to all responses"""
    response.headers['X-Content-Type-Options'] = 'nosniff'
    response.headers['X-Frame-Options'] = 'SAMEORIGIN'
    response.headers['Referrer-Policy'] = 'strict-origin-when-cross-origin'
    if config.IS_PRODUCTION:
        response.headers['Strict-Transport-Security'] = 'max-age=31536000; includeSubDomains'
    response.headers['Content-Security-Policy'] = (
        "default-src 'self'; "
        "script-src 'self' 'unsafe-inline'; "
        "style-src 'self' 'unsafe-inline'; "
        "img-src 'self' data:; "
        "frame-ancestors 'self';"
    )
    return response


# --- Error boundary ---------------------------------------------------------

@app.errorhandler(DataLensError)
def handle_datalens_error(e):
    """Turn domain errors into user-facing JSON messages"""
    if isinstance(e, StorePermissionError):
        body = {
            "error": "You do not have permission to perform this action. Please sign in.",
            "details": e.message,
            "error_type": "permission",
        }
        # Diagnostic overlay data is for development only
        if not config.IS_PRODUCTION:
            body["diagnostic"] = e.to_diagnostic()
        return jsonify(body), 403
    if isinstance(e, CsvParseError):
        return jsonify({"error": e.message, "error_type": "parse"}), 400
    if isinstance(e, NetworkError):
        status = e.status_code if e.status_code and 400 <= e.status_code < 500 else 502
        return jsonify({"error": e.message, "error_type": "network"}), status
    return jsonify({"error": e.message}), 500


@app.errorhandler(413)
def handle_too_large(e):
    return jsonify({"error": f"File too large. Maximum size: {config.MAX_UPLOAD_SIZE_MB}MB"}), 413


# --- View sessions ----------------------------------------------------------

def get_view() -> ViewSession:
    """The current user's dashboard state, created on first use"""
    session_id = session['_id']
    with view_lock:
        view = view_sessions.get(session_id)
        if view is None:
            view = ViewSession(page_size=config.ROWS_PER_PAGE, highlight_mode=config.HIGHLIGHT_MODE)
            view_sessions[session_id] = view
            logger.info(f"Created view session for {session_id}")
        view.touch()
    return view


def drop_view():
    session_id = session.get('_id')
    with view_lock:
        view_sessions.pop(session_id, None)


def cleanup_expired_views():
    """Remove dashboards idle for longer than VIEW_TTL_SECONDS"""
    cutoff = time.time() - config.VIEW_TTL_SECONDS
    with view_lock:
        expired = [sid for sid, view in view_sessions.items() if view.last_access < cutoff]
        for sid in expired:
            del view_sessions[sid]
    if expired:
        logger.info(f"Removed {len(expired)} expired view sessions")
    return len(expired)


def periodic_view_cleanup():
    """Background thread for periodic cleanup"""
    while True:
        try:
            cleanup_expired_views()
        except Exception as e:
            logger.error(f"Periodic cleanup error: {e}")
        time.sleep(config.VIEW_CLEANUP_INTERVAL)


cleanup_thread = threading.Thread(target=periodic_view_cleanup, daemon=True)
cleanup_thread.start()
logger.info("View session cleanup thread started")


def refresh_highlights(view: ViewSession):
    """Fetch AI classifications when the data or the flag changed.

    Returns a notification message when the remote call failed; highlighting
    is switched off in that case.
    """
    if view.highlight_mode != 'ai' or not view.highlight_enabled:
        return None
    if not view.needs_highlight_refresh or not view.has_data:
        return None
    try:
        classifications = highlighter.classify([row.values for row in view.merged.rows], True)
    except NetworkError as e:
        logger.warning(f"Highlighting disabled after failure: {e.message}")
        view.reset_highlights()
        return e.message
    view.store_highlights(classifications)
    return None


def table_response(view: ViewSession, **extra):
    notification = refresh_highlights(view)
    payload = view.snapshot()
    if notification:
        payload["notification"] = notification
    payload.update(extra)
    return jsonify(payload)


def _flag(value) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).lower() in ('1', 'true', 'yes', 'on')


# --- Pages ------------------------------------------------------------------

@app.route('/')
def index():
    return render_template_string(
        DASHBOARD_TEMPLATE,
        username=session.get('username'),
        datasets=DATASETS,
        store_configured=csv_store.is_configured,
        max_upload_mb=config.MAX_UPLOAD_SIZE_MB,
        IS_PRODUCTION=config.IS_PRODUCTION,
    )


@app.route('/login', methods=['GET'])
def login_page():
    return render_template_string(LOGIN_TEMPLATE)


@app.route('/admin')
def admin_page():
    return render_template_string(ADMIN_TEMPLATE, username=session.get('username'))


# --- Auth -------------------------------------------------------------------

@app.route('/login', methods=['POST'])
def login():
    """Exchange credentials for an access token with the user API"""
    data = request.get_json(silent=True) or request.form
    username = (data.get('username') or '').strip()
    password = data.get('password') or ''
    if not username or not password:
        return jsonify({"error": "Username and password are required"}), 400

    try:
        token = users_client.get_token(username, password)
    except NetworkError as e:
        if e.status_code in (400, 401, 403):
            logger.warning(f"Failed login for {username}")
            return jsonify({"error": "Invalid username or password."}), 401
        logger.error(f"Login error: {e.message}")
        return jsonify({"error": e.message}), 502

    auth.sign_in(session, username, token)
    session.permanent = True
    return jsonify({"success": True, "user": {"username": username}})


@app.route('/logout', methods=['POST'])
def logout():
    drop_view()
    auth.sign_out(session)
    return jsonify({"success": True})


@app.route('/auth/status')
def auth_status():
    state = auth.SessionState.from_session(session)
    return jsonify({
        "authenticated": state.is_authenticated,
        "user": {"username": state.username} if state.is_authenticated else None,
    })


# --- Datasets ---------------------------------------------------------------

@app.route('/api/datasets/<dataset>', methods=['POST'])
def upload_dataset(dataset):
    """Replace one dataset with an uploaded CSV file"""
    if dataset not in DATASETS:
        return jsonify({"error": f"Unknown dataset: {dataset}"}), 404
    if 'file' not in request.files:
        return jsonify({"error": "No file provided"}), 400

    file = request.files['file']
    if file.filename == '':
        return jsonify({"error": "No file selected"}), 400
    if not file.filename.lower().endswith('.csv'):
        return jsonify({"error": "Please upload a .csv file"}), 400

    try:
        content = file.read().decode('utf-8-sig')
    except UnicodeDecodeError:
        return jsonify({"error": "CSV files must be UTF-8 encoded", "error_type": "parse"}), 400

    # Parse before touching state so a bad file leaves the current data alone
    table = parse_csv(content)
    if _flag(request.form.get('persist', False)):
        csv_store.save(dataset, content, file.filename)

    view = get_view()
    with view.lock:
        view.set_dataset(dataset, table)
    logger.info(f"Uploaded {file.filename} as {dataset}: {table.row_count} rows")
    return jsonify({
        "success": True,
        "dataset": dataset,
        "headers": table.headers,
        "rows": table.row_count,
        "message": f"Loaded {table.row_count} rows from {file.filename}",
    })


def _read_local_datasets():
    documents = {}
    for dataset, filename in DATA_FILES.items():
        path = os.path.join(config.DATA_DIR, filename)
        if os.path.exists(path):
            with open(path, 'r', encoding='utf-8-sig') as f:
                documents[dataset] = f.read()
        else:
            logger.warning(f"Could not load {path}. The file may not be available.")
    return documents


@app.route('/api/datasets/load', methods=['POST'])
def load_datasets():
    """Fetch both datasets from the document store or the local data directory"""
    data = request.get_json(silent=True) or request.form
    source = data.get('source', 'store')

    if source == 'store':
        if not csv_store.is_configured:
            return jsonify({"error": "The document store is not configured"}), 503
        documents = csv_store.load_all()
    elif source == 'files':
        documents = _read_local_datasets()
    else:
        return jsonify({"error": f"Unknown source: {source}"}), 400

    parsed = {dataset: parse_csv(text) for dataset, text in documents.items()}
    view = get_view()
    with view.lock:
        for dataset, table in parsed.items():
            view.set_dataset(dataset, table)

    if not parsed:
        return jsonify({
            "success": False,
            "loaded": [],
            "message": "No data found. Please ensure the data sources are available.",
        })
    return jsonify({
        "success": True,
        "loaded": sorted(parsed),
        "rows": {dataset: table.row_count for dataset, table in parsed.items()},
    })


@app.route('/clear', methods=['POST'])
def clear_data():
    """Clear the current loaded data"""
    view = get_view()
    with view.lock:
        view.clear()
    logger.info("Data cleared")
    return jsonify({"success": True, "message": "Local data cleared."})


# --- Table view -------------------------------------------------------------

@app.route('/api/table')
def get_table():
    view = get_view()
    with view.lock:
        page = request.args.get('page', type=int)
        if page is not None:
            view.set_page(page)
        return table_response(view)


@app.route('/api/view/filters', methods=['POST'])
def set_filters():
    data = request.get_json(silent=True) or {}
    columns = data.get('columns') or {}
    if not isinstance(columns, dict):
        return jsonify({"error": "'columns' must be an object"}), 400
    view = get_view()
    with view.lock:
        view.set_filters(str(data.get('global') or ''), {str(k): str(v) for k, v in columns.items()})
        return table_response(view)


@app.route('/api/view/sort', methods=['POST'])
def set_sort():
    data = request.get_json(silent=True) or {}
    key = data.get('key')
    view = get_view()
    with view.lock:
        headers = view.merged.headers if view.merged else []
        if key not in headers:
            return jsonify({"error": f"Unknown column: {key}"}), 400
        view.sort_by(key)
        return table_response(view)


@app.route('/api/view/page', methods=['POST'])
def set_page():
    data = request.get_json(silent=True) or {}
    try:
        page = int(data.get('page', 1))
    except (TypeError, ValueError):
        return jsonify({"error": "'page' must be an integer"}), 400
    view = get_view()
    with view.lock:
        view.set_page(page)
        return table_response(view)


@app.route('/api/view/highlight', methods=['POST'])
def set_highlight():
    data = request.get_json(silent=True) or {}
    view = get_view()
    with view.lock:
        view.set_highlighting(_flag(data.get('enabled', False)))
        return table_response(view)


@app.route('/api/rows/<key>')
def get_row(key):
    view = get_view()
    with view.lock:
        details = row_details(view.merged, key)
    if details is None:
        return jsonify({"error": "Row not found"}), 404
    return jsonify({"key": key, "fields": details})


@app.route('/api/charts')
def get_charts():
    view = get_view()
    with view.lock:
        return jsonify(view.chart_data())


@app.route('/export')
def export_csv():
    """Download the filtered and sorted rows (all pages)"""
    view = get_view()
    with view.lock:
        merged = view.merged
        if merged is None:
            return jsonify({"error": "No data loaded"}), 400
        rows = view.visible_rows()
        text = serialize_csv(merged.headers, [row.values for row in rows])

    logger.info(f"Exporting {len(rows)} rows")
    return send_file(
        BytesIO(text.encode('utf-8')),
        mimetype='text/csv',
        as_attachment=True,
        download_name='filtered_data.csv'
    )


# --- Admin: user management -------------------------------------------------

@app.route('/api/users', methods=['GET'])
def list_users():
    users = users_client.list_users(session.get('access_token'))
    return jsonify({"users": [user.to_dict() for user in users]})


@app.route('/api/users', methods=['POST'])
def create_user():
    data = request.get_json(silent=True) or request.form
    username = (data.get('username') or '').strip()
    password = data.get('password') or ''
    if not username or not password:
        return jsonify({"error": "Username and password are required"}), 400
    user = users_client.create_user(username, password, session.get('access_token'))
    return jsonify({
        "success": True,
        "user": user.to_dict(),
        "message": f'User "{user.username}" has been successfully created.',
    }), 201


@app.route('/api/users/<int:user_id>', methods=['DELETE'])
def delete_user(user_id):
    users_client.delete_user(user_id, session.get('access_token'))
    return jsonify({"success": True})


# --- Ops --------------------------------------------------------------------

@app.route('/health')
def health_check():
    """Health check endpoint for monitoring"""
    with view_lock:
        active_views = len(view_sessions)
    status = {
        "status": "healthy",
        "timestamp": datetime.now().isoformat(),
        "environment": config.FLASK_ENV,
        "firestore_configured": csv_store.is_configured,
        "highlight_mode": config.HIGHLIGHT_MODE,
        "active_views": active_views,
        "cleanup_thread_running": cleanup_thread.is_alive(),
    }
    if not status["cleanup_thread_running"]:
        status["status"] = "degraded"
        status["warning"] = "Cleanup thread not running"
    return jsonify(status), 200


# --- Templates --------------------------------------------------------------

BASE_STYLE = r"""
    <style>
        :root {
            --bg-primary: #FAFAFA;
            --bg-secondary: #FFFFFF;
            --text-primary: #1A1A1A;
            --text-muted: #8C8C8C;
            --border-color: #E5E5E5;
            --danger: #C62828;
            --danger-bg: #FDECEA;
            --ok-bg: #E8F5E9;
            --radius: 3px;
        }
        * { margin: 0; padding: 0; box-sizing: border-box; }
        body {
            font-family: -apple-system, BlinkMacSystemFont, 'Inter', sans-serif;
            background: var(--bg-primary);
            color: var(--text-primary);
            font-size: 14px;
            line-height: 1.5;
        }
        .container { max-width: 1200px; margin: 0 auto; padding: 2rem; }
        header { display: flex; justify-content: space-between; align-items: center;
                 margin-bottom: 1.5rem; padding-bottom: 1rem; border-bottom: 1px solid var(--border-color); }
        .muted { color: var(--text-muted); }
        .card { background: var(--bg-secondary); border: 1px solid var(--border-color);
                border-radius: var(--radius); padding: 1rem; margin-bottom: 1rem; }
        button, .button { background: var(--text-primary); color: #FFF; border: none; padding: 6px 12px;
                          border-radius: var(--radius); cursor: pointer; font-size: 13px; text-decoration: none; }
        button.secondary { background: #FFF; color: var(--text-primary); border: 1px solid var(--border-color); }
        input[type=text], input[type=password] { padding: 6px 8px; border: 1px solid var(--border-color);
                                                  border-radius: var(--radius); font-size: 13px; }
        table { width: 100%; border-collapse: collapse; font-size: 13px; }
        th, td { text-align: left; padding: 6px 8px; border-bottom: 1px solid var(--border-color);
                 white-space: nowrap; max-width: 240px; overflow: hidden; text-overflow: ellipsis; }
        th { cursor: pointer; user-select: none; }
        tr.red { background: var(--danger-bg); }
        tr.green { background: var(--ok-bg); }
        .toast { position: fixed; bottom: 20px; right: 20px; background: var(--text-primary); color: #FFF;
                 padding: 10px 16px; border-radius: var(--radius); display: none; }
        .toast.error { background: var(--danger); }
        .overlay { position: fixed; inset: 0; background: rgba(0,0,0,0.8); display: none;
                   align-items: center; justify-content: center; padding: 1rem; }
        .overlay .card { max-width: 720px; width: 100%; max-height: 80vh; overflow: auto; }
        pre { background: #222; color: #EEE; padding: 8px; border-radius: var(--radius); font-size: 12px; overflow: auto; }
        .error { color: var(--danger); }
    </style>
"""

DASHBOARD_TEMPLATE = r"""
<!DOCTYPE html>
<html lang="en">
<head>
    <meta charset="UTF-8">
    <meta name="viewport" content="width=device-width, initial-scale=1.0">
    <title>DataLens Dashboard</title>
""" + BASE_STYLE + r"""
</head>
<body>
<div class="container">
    <header>
        <div>
            <h1>DataLens Dashboard</h1>
            <p class="muted" id="summary">No data loaded.</p>
        </div>
        <div>
            <span class="muted">{{ username }}</span>
            <a class="button" href="/admin">Admin</a>
            <button class="secondary" onclick="signOut()">Logout</button>
        </div>
    </header>

    <div class="card">
        {% for dataset in datasets %}
        <label>{{ dataset }}: <input type="file" accept=".csv,text/csv" onchange="uploadFile('{{ dataset }}', this)"></label>
        {% endfor %}
        {% if store_configured %}
        <label><input type="checkbox" id="persist"> Save uploads to the document store</label>
        <button class="secondary" onclick="loadDatasets('store')">Load from store</button>
        {% endif %}
        <button class="secondary" onclick="loadDatasets('files')">Load default files</button>
        <p class="muted">CSV files up to {{ max_upload_mb }}MB, UTF-8, comma-delimited.</p>
    </div>

    <div class="card" id="charts"></div>

    <div class="card">
        <input type="text" id="globalFilter" placeholder="Search all columns..." oninput="scheduleFilters()">
        <span id="columnFilters"></span>
        <label><input type="checkbox" id="highlight" onchange="toggleHighlight(this.checked)"> Highlight anomalies</label>
        <a class="button" href="/export">Export CSV</a>
        <button class="secondary" onclick="clearData()">Clear</button>
    </div>

    <div class="card">
        <table>
            <thead id="tableHead"></thead>
            <tbody id="tableBody"></tbody>
        </table>
        <p>
            <button class="secondary" onclick="goToPage(state.page - 1)">Previous</button>
            <span id="pageInfo"></span>
            <button class="secondary" onclick="goToPage(state.page + 1)">Next</button>
        </p>
    </div>
</div>

<div class="overlay" id="rowOverlay" onclick="closeOverlay(event, 'rowOverlay')">
    <div class="card"><h3>Row Details</h3><div id="rowDetails"></div></div>
</div>

<div class="overlay" id="permissionOverlay" onclick="closeOverlay(event, 'permissionOverlay')">
    <div class="card">
        <h3 class="error">Firestore Security Rules Error</h3>
        <p>A request was denied by your security rules.</p>
        <pre id="permissionDetails"></pre>
        <button onclick="document.getElementById('permissionOverlay').style.display='none'">Dismiss</button>
    </div>
</div>

<div class="toast" id="toast"></div>

<script>
{% raw %}
    let state = { page: 1, total_pages: 0, headers: [], rows: [] };
    let filterTimer = null;

    function showToast(message, isError) {
        const toast = document.getElementById('toast');
        toast.textContent = message;
        toast.className = 'toast' + (isError ? ' error' : '');
        toast.style.display = 'block';
        setTimeout(() => toast.style.display = 'none', 3000);
    }

    function escapeHtml(text) {
        return (text == null ? '' : String(text))
            .replace(/&/g, '&amp;')
            .replace(/</g, '&lt;')
            .replace(/>/g, '&gt;')
            .replace(/"/g, '&quot;')
            .replace(/'/g, '&#39;');
    }

    async function api(url, options) {
        const response = await fetch(url, options);
        const data = await response.json().catch(() => ({}));
        if (!response.ok) {
            if (data.diagnostic) {
                document.getElementById('permissionDetails').textContent = JSON.stringify(data.diagnostic, null, 2);
                document.getElementById('permissionOverlay').style.display = 'flex';
            }
            throw new Error(data.error || ('Server returned ' + response.status));
        }
        if (data.notification) showToast(data.notification, true);
        return data;
    }

    function postJson(url, body) {
        return api(url, { method: 'POST', headers: { 'Content-Type': 'application/json' }, body: JSON.stringify(body || {}) });
    }

    function render(data) {
        state = data;
        document.getElementById('summary').textContent =
            data.total_rows ? `Displaying ${data.filtered_rows} of ${data.total_rows} total rows.` : 'No data loaded.';
        const sort = data.sort || {};
        const head = document.getElementById('tableHead');
        head.innerHTML = '<tr>' + data.headers.map(h => {
            const arrow = sort.key === h ? (sort.direction === 'ascending' ? ' ▲' : ' ▼') : '';
            return `<th data-column="${escapeHtml(h)}">${escapeHtml(h)}${arrow}</th>`;
        }).join('') + '</tr>';
        head.querySelectorAll('th').forEach(th =>
            th.addEventListener('click', () => sortBy(th.dataset.column)));
        const body = document.getElementById('tableBody');
        body.innerHTML = data.rows.map(row =>
            `<tr class="${escapeHtml(row.highlight)}" data-key="${escapeHtml(row.key)}">` +
            data.headers.map(h => `<td>${escapeHtml(row.values[h])}</td>`).join('') + '</tr>'
        ).join('');
        body.querySelectorAll('tr').forEach(tr =>
            tr.addEventListener('click', () => showRow(tr.dataset.key)));
        document.getElementById('pageInfo').textContent =
            data.total_pages ? `Page ${data.page} of ${data.total_pages}` : '';
        document.getElementById('highlight').checked = data.highlight_enabled;
        renderColumnFilters(data.headers, data.column_filters || {});
    }

    function renderColumnFilters(headers, filters) {
        const container = document.getElementById('columnFilters');
        if (container.dataset.headers === headers.join(',')) return;
        container.dataset.headers = headers.join(',');
        container.innerHTML = headers.map(h =>
            `<input type="text" class="column-filter" data-column="${escapeHtml(h)}" placeholder="${escapeHtml(h)}"
                    value="${escapeHtml(filters[h] || '')}">`).join('');
        container.querySelectorAll('.column-filter').forEach(input =>
            input.addEventListener('input', scheduleFilters));
    }

    async function refresh() {
        try { render(await api('/api/table')); } catch (err) { showToast(err.message, true); }
        try { renderCharts(await api('/api/charts')); } catch (err) { showToast(err.message, true); }
    }

    function renderCharts(data) {
        const sources = data.sources.map(s => `${escapeHtml(s.name)}: ${s.value}`).join(' · ') || 'Please upload data';
        let scores = '`AnomalyScore` column not found or empty.';
        if (data.has_anomaly_scores) {
            scores = data.anomaly_scores.map(b => `${b.name}: ${b.threads} / ${b.nonThreads}`).join(' · ');
        }
        document.getElementById('charts').innerHTML =
            `<p><strong>Threads vs Non-Threads</strong> ${sources}</p>` +
            `<p><strong>Anomaly Score Distribution</strong> (threads / non-threads) ${scores}</p>`;
    }

    function scheduleFilters() {
        clearTimeout(filterTimer);
        filterTimer = setTimeout(applyFilters, 250);
    }

    async function applyFilters() {
        const columns = {};
        document.querySelectorAll('.column-filter').forEach(input => {
            if (input.value) columns[input.dataset.column] = input.value;
        });
        const body = { global: document.getElementById('globalFilter').value, columns: columns };
        try { render(await postJson('/api/view/filters', body)); } catch (err) { showToast(err.message, true); }
    }

    async function sortBy(key) {
        try { render(await postJson('/api/view/sort', { key: key })); } catch (err) { showToast(err.message, true); }
    }

    async function goToPage(page) {
        if (page < 1 || page > state.total_pages) return;
        try { render(await postJson('/api/view/page', { page: page })); } catch (err) { showToast(err.message, true); }
    }

    async function toggleHighlight(enabled) {
        try { render(await postJson('/api/view/highlight', { enabled: enabled })); } catch (err) { showToast(err.message, true); }
    }

    async function uploadFile(dataset, input) {
        if (!input.files.length) return;
        const form = new FormData();
        form.append('file', input.files[0]);
        const persist = document.getElementById('persist');
        if (persist && persist.checked) form.append('persist', 'true');
        try {
            const data = await api('/api/datasets/' + dataset, { method: 'POST', body: form });
            showToast(data.message);
            refresh();
        } catch (err) {
            showToast(err.message, true);
        }
        input.value = '';
    }

    async function loadDatasets(source) {
        try {
            const data = await postJson('/api/datasets/load', { source: source });
            showToast(data.success ? 'Loaded ' + data.loaded.join(', ') : data.message, !data.success);
            refresh();
        } catch (err) {
            showToast(err.message, true);
        }
    }

    async function clearData() {
        if (!confirm('Clear current data?')) return;
        try {
            const data = await postJson('/clear');
            showToast(data.message);
            refresh();
        } catch (err) {
            showToast(err.message, true);
        }
    }

    async function showRow(key) {
        try {
            const data = await api('/api/rows/' + encodeURIComponent(key));
            document.getElementById('rowDetails').innerHTML = data.fields.map(f =>
                `<p><strong>${escapeHtml(f.header)}</strong><br>${escapeHtml(f.value)}</p>`).join('');
            document.getElementById('rowOverlay').style.display = 'flex';
        } catch (err) {
            showToast(err.message, true);
        }
    }

    function closeOverlay(event, id) {
        if (event.target.id === id) document.getElementById(id).style.display = 'none';
    }

    async function signOut() {
        await fetch('/logout', { method: 'POST' });
        window.location.href = '/login';
    }

    refresh();
{% endraw %}
</script>
</body>
</html>
"""

LOGIN_TEMPLATE = r"""
<!DOCTYPE html>
<html lang="en">
<head>
    <meta charset="UTF-8">
    <title>DataLens • Login</title>
""" + BASE_STYLE + r"""
</head>
<body>
<div class="container" style="max-width: 360px;">
    <div class="card">
        <h2>Login Required</h2>
        <p class="muted">Please enter your credentials to access the application.</p>
        <form id="loginForm">
            <p><input type="text" id="username" placeholder="Enter your username" required></p>
            <p><input type="password" id="password" placeholder="Enter your password" required></p>
            <p class="error" id="loginError"></p>
            <button type="submit">Sign In</button>
        </form>
    </div>
</div>
<script>
{% raw %}
    document.getElementById('loginForm').addEventListener('submit', async (e) => {
        e.preventDefault();
        const errorEl = document.getElementById('loginError');
        errorEl.textContent = '';
        try {
            const response = await fetch('/login', {
                method: 'POST',
                headers: { 'Content-Type': 'application/json' },
                body: JSON.stringify({
                    username: document.getElementById('username').value,
                    password: document.getElementById('password').value
                })
            });
            const data = await response.json().catch(() => ({}));
            if ((response.ok && data.success) || response.status === 409) {
                window.location.href = '/';
            } else {
                errorEl.textContent = data.error || 'Invalid username or password.';
            }
        } catch (err) {
            errorEl.textContent = err.message || 'An unexpected error occurred during login.';
        }
    });
{% endraw %}
</script>
</body>
</html>
"""

ADMIN_TEMPLATE = r"""
<!DOCTYPE html>
<html lang="en">
<head>
    <meta charset="UTF-8">
    <title>DataLens • Admin</title>
""" + BASE_STYLE + r"""
</head>
<body>
<div class="container" style="max-width: 800px;">
    <header>
        <div>
            <h1>Admin Panel</h1>
            <p class="muted">Manage users for your application.</p>
        </div>
        <div>
            <span class="muted">{{ username }}</span>
            <a class="button" href="/">Dashboard</a>
        </div>
    </header>
    <div class="card">
        <h3>Create New User</h3>
        <form id="createForm">
            <input type="text" id="newUsername" placeholder="Username" required>
            <input type="password" id="newPassword" placeholder="Password" required>
            <button type="submit">Create User</button>
        </form>
    </div>
    <div class="card">
        <h3>Existing Users</h3>
        <table>
            <thead><tr><th>ID</th><th>Username</th><th></th></tr></thead>
            <tbody id="users"><tr><td colspan="3" class="muted">Loading...</td></tr></tbody>
        </table>
    </div>
</div>
<div class="toast" id="toast"></div>
<script>
{% raw %}
    function showToast(message, isError) {
        const toast = document.getElementById('toast');
        toast.textContent = message;
        toast.className = 'toast' + (isError ? ' error' : '');
        toast.style.display = 'block';
        setTimeout(() => toast.style.display = 'none', 3000);
    }

    function escapeHtml(text) {
        return (text == null ? '' : String(text))
            .replace(/&/g, '&amp;')
            .replace(/</g, '&lt;')
            .replace(/>/g, '&gt;')
            .replace(/"/g, '&quot;')
            .replace(/'/g, '&#39;');
    }

    async function api(url, options) {
        const response = await fetch(url, options);
        const data = await response.json().catch(() => ({}));
        if (!response.ok) throw new Error(data.error || ('Server returned ' + response.status));
        return data;
    }

    async function fetchUsers() {
        try {
            const data = await api('/api/users');
            const table = document.getElementById('users');
            table.innerHTML = data.users.length ? data.users.map(u =>
                `<tr><td>${escapeHtml(u.id)}</td><td>${escapeHtml(u.username)}</td>` +
                `<td><button class="secondary delete-user" data-id="${escapeHtml(u.id)}">Delete</button></td></tr>`).join('')
                : '<tr><td colspan="3" class="muted">No users found.</td></tr>';
            table.querySelectorAll('.delete-user').forEach(button =>
                button.addEventListener('click', () => deleteUser(button.dataset.id)));
        } catch (err) {
            showToast('Failed to fetch users: ' + err.message, true);
        }
    }

    async function deleteUser(id) {
        if (!confirm('Delete this user?')) return;
        try {
            await api('/api/users/' + encodeURIComponent(id), { method: 'DELETE' });
            showToast('User deleted');
            fetchUsers();
        } catch (err) {
            showToast('Error deleting user: ' + err.message, true);
        }
    }

    document.getElementById('createForm').addEventListener('submit', async (e) => {
        e.preventDefault();
        try {
            const data = await api('/api/users', {
                method: 'POST',
                headers: { 'Content-Type': 'application/json' },
                body: JSON.stringify({
                    username: document.getElementById('newUsername').value,
                    password: document.getElementById('newPassword').value
                })
            });
            showToast(data.message);
            e.target.reset();
            fetchUsers();
        } catch (err) {
            showToast('Error creating user: ' + err.message, true);
        }
    });

    fetchUsers();
{% endraw %}
</script>
</body>
</html>
"""

config.validate_production_config()


if __name__ == "__main__":
    # ONLY for local development; production runs under gunicorn (gunicorn_config.py)
    app.run(host="0.0.0.0", port=int(os.environ.get('PORT', '8080')), debug=not config.IS_PRODUCTION)
