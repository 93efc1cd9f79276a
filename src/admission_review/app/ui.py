from __future__ import annotations


def render_homepage() -> str:
    return """
<!doctype html>
<html lang="en">
<head>
  <meta charset="utf-8">
  <meta name="viewport" content="width=device-width, initial-scale=1">
  <title>Admission Review Console</title>
  <link
    href="https://fonts.googleapis.com/css2?family=Space+Grotesk:wght@400;500;700&family=IBM+Plex+Mono:wght@400;500&display=swap"
    rel="stylesheet"
  >
  <style>
    :root {
      --bg: #f3efe6;
      --panel: #fffaf0;
      --ink: #112433;
      --muted: #5c6b74;
      --accent: #0f8b8d;
      --accent-strong: #136f63;
      --line: #d7d1c3;
      --warn: #b00020;
    }
    * { box-sizing: border-box; }
    body {
      margin: 0;
      min-height: 100vh;
      font-family: "Space Grotesk", sans-serif;
      color: var(--ink);
      background:
        radial-gradient(circle at 10% 10%, #b6e3df 0%, transparent 45%),
        radial-gradient(circle at 90% 85%, #ffd3a8 0%, transparent 42%),
        var(--bg);
    }
    .wrap { max-width: 1000px; margin: 24px auto; padding: 0 16px 24px; display: grid; gap: 16px; }
    .hero, .card {
      background: var(--panel);
      border: 1px solid var(--line);
      border-radius: 16px;
      box-shadow: 0 8px 22px rgba(17, 36, 51, 0.08);
      padding: 16px;
    }
    .title { margin: 0; font-size: clamp(1.3rem, 2.5vw, 2rem); }
    .sub { margin: 6px 0 0; color: var(--muted); }
    .row { display: flex; gap: 10px; flex-wrap: wrap; align-items: center; }
    input {
      border: 1px solid var(--line);
      border-radius: 10px;
      padding: 9px 12px;
      font-family: "IBM Plex Mono", monospace;
    }
    button {
      border: none;
      border-radius: 10px;
      padding: 10px 14px;
      font-family: "Space Grotesk", sans-serif;
      font-weight: 700;
      cursor: pointer;
    }
    .primary { background: var(--accent); color: #fff; }
    .secondary { background: #edf6f5; color: var(--accent-strong); }
    .danger { background: #ffe8ec; color: var(--warn); }
    .status { margin: 10px 0 0; font-family: "IBM Plex Mono", monospace; font-size: 0.9rem; }
    .error { color: var(--warn); }
    pre {
      margin: 0;
      overflow: auto;
      max-height: 380px;
      background: #112433;
      color: #ebf7f7;
      border-radius: 12px;
      padding: 14px;
      font-family: "IBM Plex Mono", monospace;
      font-size: 0.82rem;
    }
  </style>
</head>
<body>
  <main class="wrap">
    <section class="hero">
      <h1 class="title">Admission Review Console</h1>
      <p class="sub">Schedule batch verification, run subjects on demand, inspect results.</p>
    </section>

    <section class="card">
      <div class="row">
        <button class="primary" id="runBtn">Run Batch Now</button>
        <button class="secondary" id="startBtn">Start Scheduler</button>
        <button class="danger" id="stopBtn">Stop Scheduler</button>
        <button class="secondary" id="statusBtn">Status</button>
        <button class="secondary" id="logsBtn">Logs</button>
      </div>
      <div class="row" style="margin-top: 12px;">
        <input id="subjectInput" placeholder="subject id">
        <button class="secondary" id="verifyBtn">Verify Subject</button>
        <button class="secondary" id="resultBtn">Cached Result</button>
      </div>
      <p class="status" id="statusText">Ready.</p>
    </section>

    <section class="card">
      <pre id="output">No response yet.</pre>
    </section>
  </main>

  <script>
    const statusText = document.getElementById("statusText");
    const output = document.getElementById("output");
    const subjectInput = document.getElementById("subjectInput");

    function setStatus(message, isError = false) {
      statusText.textContent = message;
      statusText.classList.toggle("error", isError);
    }

    async function call(url, method = "GET") {
      try {
        setStatus(`${method} ${url} ...`);
        const response = await fetch(url, { method });
        const data = await response.json();
        output.textContent = JSON.stringify(data, null, 2);
        setStatus(`${response.status} ${method} ${url}`, !response.ok);
      } catch (err) {
        setStatus(String(err.message || err), true);
      }
    }

    function subjectId() {
      const value = subjectInput.value.trim();
      if (!value) {
        setStatus("Subject id is required.", true);
      }
      return value;
    }

    document.getElementById("runBtn").onclick = () => call("/verification/run", "POST");
    document.getElementById("startBtn").onclick = () => call("/verification/scheduler/start", "POST");
    document.getElementById("stopBtn").onclick = () => call("/verification/scheduler/stop", "POST");
    document.getElementById("statusBtn").onclick = () => call("/verification/status");
    document.getElementById("logsBtn").onclick = () => call("/verification/logs?limit=100");
    document.getElementById("verifyBtn").onclick = () => {
      const id = subjectId();
      if (id) call(`/verification/subjects/${encodeURIComponent(id)}/verify`, "POST");
    };
    document.getElementById("resultBtn").onclick = () => {
      const id = subjectId();
      if (id) call(`/verification/results/${encodeURIComponent(id)}`);
    };
  </script>
</body>
</html>
"""
