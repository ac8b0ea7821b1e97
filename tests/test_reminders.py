from datetime import date, timedelta

import pytest

from application import AbstractNotifier
from conftest import ADMIN_EMAIL
from reminders import run_reminders


class RecordingNotifier(AbstractNotifier):
    def __init__(self, fail=False):
        self.fail = fail
        self.sent = []

    def _record(self, kind, to, details):
        if self.fail:
            raise ConnectionError("SMTP server unreachable")
        self.sent.append((kind, to, details))

    def upcoming_audit(self, to, details):
        self._record("upcoming_audit", to, details)

    def finding_due(self, to, details):
        self._record("finding_due", to, details)

    def finding_overdue(self, to, details):
        self._record("finding_overdue", to, details)


@pytest.fixture
def due_items(client, admin, reference_data):
    today = date.today()
    audit = client.post(
        "/api/audits",
        headers=admin,
        json=dict(
            reference_data,
            audit_start_date=today.isoformat(),
            next_due_date=(today + timedelta(days=10)).isoformat(),
        ),
    ).json()["data"]
    for target in (today + timedelta(days=7), today - timedelta(days=2)):
        resp = client.post(
            "/api/findings",
            headers=admin,
            json={
                "audit_id": audit["id"],
                "category": "Minor",
                "description": "Lifeboat davit brake lining worn",
                "target_date": target.isoformat(),
            },
        )
        assert resp.status_code == 201
    return audit


def _run(client, notifier):
    state = client.app.state
    return run_reminders(state.database, state.config, notifier=notifier)


def test_reminders_sent_once_per_day(client, due_items):
    notifier = RecordingNotifier()
    first = _run(client, notifier)

    assert (first.upcoming_audits, first.findings_due_soon, first.overdue_findings) == (1, 1, 1)
    kinds = sorted(kind for kind, _, _ in notifier.sent)
    assert kinds == ["finding_due", "finding_overdue", "upcoming_audit"]
    assert all(to == ADMIN_EMAIL for _, to, _ in notifier.sent)

    upcoming = next(d for k, _, d in notifier.sent if k == "upcoming_audit")
    assert upcoming["audit_reference"] == due_items["audit_reference"]
    assert upcoming["days_remaining"] == 10

    second = _run(client, notifier)
    assert (second.upcoming_audits, second.findings_due_soon, second.overdue_findings) == (0, 0, 0)
    assert second.skipped == 3
    assert len(notifier.sent) == 3


def test_failed_delivery_is_retried_next_run(client, due_items):
    failed = _run(client, RecordingNotifier(fail=True))
    assert failed.failed == 3
    assert failed.overdue_findings == 0

    notifier = RecordingNotifier()
    retry = _run(client, notifier)
    assert retry.failed == 0
    assert len(notifier.sent) == 3


def test_due_reminder_skips_viewer_created_audits(client, admin, make_user, reference_data):
    # give the Viewer role audit/finding create rights so it can own an audit
    viewer = make_user("Viewer")
    roles = client.get("/api/roles", headers=admin).json()["data"]
    viewer_role = next(r for r in roles if r["role_name"] == "Viewer")
    pages = {p["page_path"]: p["id"] for p in client.get("/api/pages", headers=admin).json()["data"]}
    perms = {p["permission_name"]: p["id"] for p in client.get("/api/permissions", headers=admin).json()["data"]}
    client.put(
        f"/api/roles/{viewer_role['id']}/permissions",
        headers=admin,
        json={"permissions": [
            {"page_id": pages["/audits"], "permission_id": perms["create"]},
            {"page_id": pages["/findings"], "permission_id": perms["create"]},
        ]},
    )
    audit = client.post(
        "/api/audits", headers=viewer,
        json=dict(reference_data, audit_start_date=date.today().isoformat()),
    ).json()["data"]
    client.post(
        "/api/findings", headers=viewer,
        json={
            "audit_id": audit["id"],
            "category": "Observation",
            "description": "Garbage record book entries incomplete",
            "target_date": (date.today() + timedelta(days=7)).isoformat(),
        },
    )

    result = _run(client, RecordingNotifier())
    assert result.findings_due_soon == 0
