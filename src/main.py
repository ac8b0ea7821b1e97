"""
main.py

Entry point for the Vessel Audit Monitor API.

Configures logging from the environment and starts uvicorn.  The database,
the upload directory and the default roles / pages / permissions are set up
by the app's startup hook, so a fresh checkout needs nothing more than a
.env file (or none at all, which gives a local SQLite database).

Usage
-----
    # Option 1 — run directly
    python main.py

    # Option 2 — run via uvicorn CLI (recommended for development)
    uvicorn main:app --reload --port 8000

    # Option 3 — MySQL instead of SQLite
    DB_HOST=localhost DB_USER=audit DB_PASSWORD=... uvicorn main:app --port 8000

    # Reminder e-mails run as a separate process
    python reminders.py --daemon

Once running, open your browser at:
    http://localhost:8000/docs      ← Swagger UI  (try every endpoint interactively)
    http://localhost:8000/redoc     ← ReDoc
    http://localhost:8000/health    ← liveness check

Quick-start walkthrough (use Swagger UI or curl)
-------------------------------------------------
1.  POST  /api/auth/login               — log in as the seeded admin
                                          (ADMIN_EMAIL / ADMIN_PASSWORD)
                                          copy data.token
2.  POST  /api/vessels                  — register a vessel
                                          Authorization: Bearer <token>
3.  POST  /api/audit-types, /api/audit-parties — reference data for the audit
4.  POST  /api/audits                   — create an audit; the reference
                                          AUD-<YY>-<id> is generated if omitted
5.  POST  /api/findings                 — raise a finding with a target date
6.  POST  /api/findings/{id}/evidence   — attach evidence (multipart "files")
7.  POST  /api/findings/{id}/close      — close it once the action is verified
8.  GET   /api/dashboard/stats          — year-to-date counters
9.  PUT   /api/roles/{id}/permissions   — adjust what a role may do

Default logins
--------------
Only the admin account is seeded.  Create Encoder / Viewer / Auditor users
through POST /api/users; their access comes entirely from the role's rows in
the permission matrix.
"""

import logging

import uvicorn

from api import app  # noqa: F401  (imported for "main:app")
from config import Config


# ---------------------------------------------------------------------------
# Logging is configured once here; library modules only create loggers.
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=Config().LOG_LEVEL,
    format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
)


if __name__ == "__main__":
    uvicorn.run(
        "main:app",
        host="127.0.0.1",
        port=8000,
        reload=True,          # auto-reload on file changes during development
        log_level="info",
    )
