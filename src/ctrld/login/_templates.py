"""HTML pages served by the setup server."""

import html
from string import Template

CONTENT_SECURITY_POLICY = (
    "default-src 'self'; script-src 'self' 'unsafe-inline'; "
    "style-src 'self' 'unsafe-inline'; connect-src 'self'"
)

_STYLE = """
    <style>
        :root {
            --bg: #010818;
            --bg-card: #0a1628;
            --bg-input: #131f35;
            --border: #1e3a5f;
            --text: #f3f4f6;
            --text-muted: #6b7280;
            --primary: #4a20e5;
            --success: #10b981;
            --error: #ef4444;
        }
        * { margin: 0; padding: 0; box-sizing: border-box; }
        body {
            font-family: -apple-system, BlinkMacSystemFont, sans-serif;
            background: var(--bg);
            color: var(--text);
            min-height: 100vh;
            display: flex;
            align-items: center;
            justify-content: center;
            padding: 2rem 1.5rem;
        }
        .card {
            width: 100%;
            max-width: 400px;
            background: var(--bg-card);
            border: 1px solid var(--border);
            border-radius: 12px;
            padding: 2rem;
        }
        h1 { font-size: 1.25rem; margin-bottom: 0.5rem; }
        p { color: var(--text-muted); font-size: 0.9rem; margin-bottom: 1.5rem; }
        label { display: block; font-size: 0.85rem; margin-bottom: 0.35rem; }
        input {
            width: 100%;
            padding: 0.65rem 0.75rem;
            margin-bottom: 1rem;
            background: var(--bg-input);
            border: 1px solid var(--border);
            border-radius: 8px;
            color: var(--text);
            font-family: monospace;
        }
        input.error { border-color: var(--error); }
        .actions { display: flex; gap: 0.75rem; }
        button {
            flex: 1;
            padding: 0.65rem;
            border: 1px solid var(--primary);
            border-radius: 8px;
            background: transparent;
            color: var(--text);
            cursor: pointer;
        }
        button[type=submit] { background: var(--primary); }
        button:disabled { opacity: 0.5; cursor: default; }
        .status { display: none; margin-top: 1rem; font-size: 0.85rem; }
        .status.show { display: block; }
        .status.success { color: var(--success); }
        .status.error { color: var(--error); }
        .account { font-family: monospace; color: var(--success); }
    </style>
"""

_SETUP_PAGE = Template("""<!DOCTYPE html>
<html lang="en">
<head>
    <meta charset="UTF-8">
    <meta name="viewport" content="width=device-width, initial-scale=1.0">
    <title>Control D - Connect Account</title>
$style
</head>
<body>
    <div class="card">
        <h1>Connect your Control D account</h1>
        <p>Create an API token in the Control D dashboard, then give it a local name.</p>
        <form id="setupForm" autocomplete="off">
            <label for="accountName">Account name</label>
            <input id="accountName" name="account_name" maxlength="64" placeholder="default">
            <label for="apiToken">API token</label>
            <input id="apiToken" name="api_token" type="password" maxlength="256" placeholder="api.xxxxxxxx">
            <div class="actions">
                <button type="button" id="testBtn">Test connection</button>
                <button type="submit" id="submitBtn">Save</button>
            </div>
            <div id="status" class="status"></div>
        </form>
    </div>
    <script>
        const csrfToken = '$csrf_token';
        const form = document.getElementById('setupForm');
        const testBtn = document.getElementById('testBtn');
        const submitBtn = document.getElementById('submitBtn');
        const status = document.getElementById('status');
        let isBusy = false;

        function showStatus(type, message) {
            status.className = 'status show ' + type;
            status.textContent = message;
        }

        function setBusy(busy) {
            isBusy = busy;
            testBtn.disabled = busy;
            submitBtn.disabled = busy;
        }

        function formData() {
            return {
                account_name: document.getElementById('accountName').value.trim(),
                api_token: document.getElementById('apiToken').value.trim()
            };
        }

        async function post(path, data) {
            const response = await fetch(path, {
                method: 'POST',
                headers: { 'Content-Type': 'application/json', 'X-CSRF-Token': csrfToken },
                body: JSON.stringify(data)
            });
            return response.json();
        }

        testBtn.addEventListener('click', async () => {
            if (isBusy) return;
            setBusy(true);
            showStatus('loading', 'Testing connection...');
            try {
                const result = await post('/validate', formData());
                showStatus(result.success ? 'success' : 'error', result.success ? result.message : result.error);
            } catch (err) {
                showStatus('error', 'Request failed: ' + err.message);
            } finally {
                setBusy(false);
            }
        });

        form.addEventListener('submit', async (e) => {
            e.preventDefault();
            if (isBusy) return;
            setBusy(true);
            showStatus('loading', 'Saving credentials...');
            try {
                const result = await post('/submit', formData());
                if (result.success) {
                    showStatus('success', 'Credentials saved! Redirecting...');
                    setTimeout(() => { window.location.href = '/success'; }, 600);
                    return;
                }
                showStatus('error', result.error);
            } catch (err) {
                showStatus('error', 'Request failed: ' + err.message);
            }
            setBusy(false);
        });
    </script>
</body>
</html>
""")

_SUCCESS_PAGE = Template("""<!DOCTYPE html>
<html lang="en">
<head>
    <meta charset="UTF-8">
    <meta name="viewport" content="width=device-width, initial-scale=1.0">
    <title>Connected - Control D</title>
$style
</head>
<body>
    <div class="card">
        <h1>You're connected</h1>
        $account
        <p>You can close this window and return to your terminal.</p>
    </div>
    <script>fetch('/complete', { method: 'POST', headers: { 'X-CSRF-Token': '$csrf_token' } }).catch(() => {});</script>
</body>
</html>
""")


def render_setup_page(csrf_token: str) -> bytes:
    page = _SETUP_PAGE.substitute(style=_STYLE, csrf_token=html.escape(csrf_token))
    return page.encode("utf-8")


def render_success_page(csrf_token: str, account_name: str | None) -> bytes:
    account = ""
    if account_name:
        account = f'<p>Account <span class="account">{html.escape(account_name)}</span> was saved.</p>'
    page = _SUCCESS_PAGE.substitute(
        style=_STYLE,
        account=account,
        csrf_token=html.escape(csrf_token),
    )
    return page.encode("utf-8")
