from datetime import date, timedelta

import pytest

from model import (
    Action,
    Audit,
    AuditStatus,
    Finding,
    FindingCategory,
    FindingStatus,
    Page,
    Permission,
    Resource,
    RolePermission,
    UserRole,
)
from service import (
    AccessControlService,
    AuthenticatedUser,
    DashboardService,
    FindingService,
    ReminderService,
    can,
    generate_audit_reference,
    pagination_params,
    total_pages,
    truncate,
)

TODAY = date(2026, 3, 15)


# ---------------------------------------------------------------------------
# Pagination & formatting helpers
# ---------------------------------------------------------------------------

@pytest.mark.parametrize(
    "page, limit, expected",
    [
        (None, None, (1, 10, 0)),
        ("3", "20", (3, 20, 40)),
        ("0", "1000", (1, 100, 0)),
        ("-2", "500", (1, 100, 0)),
        ("abc", "0", (1, 10, 0)),
    ],
)
def test_pagination_params_clamps(page, limit, expected):
    p = pagination_params(page, limit)
    assert (p.page, p.limit, p.offset) == expected


def test_total_pages_rounds_up():
    assert total_pages(21, 10) == 3
    assert total_pages(0, 10) == 0


def test_audit_reference_format():
    assert generate_audit_reference(7, 2026) == "AUD-26-00007"
    assert generate_audit_reference(123456, 2030) == "AUD-30-123456"


def test_truncate_adds_ellipsis_only_when_needed():
    assert truncate("short", 10) == "short"
    assert truncate("x" * 12, 10) == "x" * 10 + "..."
    assert truncate(None) == ""


# ---------------------------------------------------------------------------
# Finding state machine
# ---------------------------------------------------------------------------

def _finding(**kwargs):
    defaults = dict(
        audit_id=1,
        category=FindingCategory.MINOR,
        description="Fire damper not tested",
        target_date=TODAY + timedelta(days=10),
        created_by=1,
        today=TODAY,
    )
    defaults.update(kwargs)
    return FindingService().create_finding(**defaults)


def test_new_finding_with_past_target_is_overdue():
    f = _finding(target_date=TODAY - timedelta(days=1))
    assert f.status == FindingStatus.OVERDUE


def test_new_finding_due_today_is_not_overdue():
    assert _finding(target_date=TODAY).status == FindingStatus.OPEN


def test_short_description_rejected():
    with pytest.raises(ValueError):
        _finding(description="too short")


def test_close_then_reopen_past_due_finding_goes_overdue():
    svc = FindingService()
    f = _finding()
    svc.close_finding(f, TODAY)
    assert f.status == FindingStatus.CLOSED
    assert f.closure_date == TODAY

    later = TODAY + timedelta(days=30)
    svc.reopen_finding(f, later)
    assert f.status == FindingStatus.OVERDUE
    assert f.closure_date is None


def test_close_twice_rejected():
    svc = FindingService()
    f = _finding()
    svc.close_finding(f, TODAY)
    with pytest.raises(ValueError):
        svc.close_finding(f, TODAY)


def test_reopen_requires_closed():
    with pytest.raises(ValueError):
        FindingService().reopen_finding(_finding(), TODAY)


@pytest.mark.parametrize("status", [FindingStatus.CLOSED, FindingStatus.OVERDUE])
def test_generic_update_cannot_set_closed_or_overdue(status):
    with pytest.raises(ValueError):
        FindingService().update_finding(_finding(), {"status": status}, TODAY)


def test_moving_target_date_forward_lifts_overdue():
    svc = FindingService()
    f = _finding(target_date=TODAY - timedelta(days=3))
    svc.update_finding(f, {"target_date": TODAY + timedelta(days=3)}, TODAY)
    assert f.status == FindingStatus.OPEN


def test_sweep_skips_closed_and_deleted():
    svc = FindingService()
    past = TODAY - timedelta(days=1)
    open_f = Finding(id=1, target_date=past, status=FindingStatus.OPEN)
    closed = Finding(id=2, target_date=past, status=FindingStatus.CLOSED)
    deleted = Finding(id=3, target_date=past, status=FindingStatus.IN_PROGRESS)
    deleted.deleted_at = deleted.created_at
    no_target = Finding(id=4, target_date=None, status=FindingStatus.OPEN)

    changed = svc.sweep_overdue([open_f, closed, deleted, no_target], TODAY)

    assert [f.id for f in changed] == [1]
    assert closed.status == FindingStatus.CLOSED
    assert deleted.status == FindingStatus.IN_PROGRESS


# ---------------------------------------------------------------------------
# Access control
# ---------------------------------------------------------------------------

def test_default_matrix_shapes():
    matrix = AccessControlService().default_matrix()
    viewer = matrix[UserRole.VIEWER]
    encoder = matrix[UserRole.ENCODER]

    assert (Resource.AUDITS, Action.VIEW) in viewer
    assert not any(a != Action.VIEW for _, a in viewer)
    assert (Resource.USERS, Action.VIEW) not in viewer
    assert (Resource.FINDINGS, Action.CLOSE) in encoder
    assert (Resource.FINDINGS, Action.REOPEN) not in encoder
    assert (Resource.AUDITS, Action.DELETE) not in encoder
    assert len(matrix[UserRole.ADMIN]) == len(Resource) * len(Action)


def test_can_consults_only_grants():
    pages = [Page(id=1, page_path="/findings"), Page(id=2, page_path="/users", is_active=False)]
    perms = [Permission(id=10, permission_name="close"), Permission(id=11, permission_name="view")]
    rows = [
        RolePermission(role_id=1, page_id=1, permission_id=10),
        RolePermission(role_id=1, page_id=2, permission_id=11),
    ]
    grants = AccessControlService().build_grants(rows, pages, perms)
    user = AuthenticatedUser(id=1, email="a@b.c", name="A", role_id=1, role_name="Admin", grants=grants)

    assert can(user, Action.CLOSE, Resource.FINDINGS)
    # Admin by name, but the matrix decides
    assert not can(user, Action.DELETE, Resource.FINDINGS)
    # inactive pages grant nothing
    assert not can(user, Action.VIEW, Resource.USERS)


def test_replace_permissions_rejects_unknown_ids_and_dedupes():
    svc = AccessControlService()
    pages = [Page(id=1, page_path="/audits")]
    perms = [Permission(id=5, permission_name="view")]

    rows = svc.replace_permissions(3, [(1, 5), (1, 5)], pages, perms)
    assert len(rows) == 1 and rows[0].role_id == 3

    with pytest.raises(ValueError):
        svc.replace_permissions(3, [(2, 5)], pages, perms)


# ---------------------------------------------------------------------------
# Dashboard & reminder selection
# ---------------------------------------------------------------------------

def test_audit_stats_year_to_date():
    audits = [
        Audit(id=1, audit_start_date=date(2026, 1, 5), next_due_date=TODAY + timedelta(days=10)),
        Audit(id=2, audit_start_date=date(2026, 2, 1), status=AuditStatus.COMPLETED),
        Audit(id=3, audit_start_date=date(2026, 2, 20), next_due_date=TODAY - timedelta(days=1)),
        Audit(id=4, audit_start_date=date(2025, 12, 31)),
    ]
    stats = DashboardService().audit_stats(audits, TODAY)
    assert stats == {"total_ytd": 3, "upcoming_30days": 1, "completed": 1, "overdue": 1}


def test_findings_due_soon_is_exactly_seven_days_out():
    svc = ReminderService()
    findings = [
        Finding(id=1, target_date=TODAY + timedelta(days=7)),
        Finding(id=2, target_date=TODAY + timedelta(days=6)),
        Finding(id=3, target_date=TODAY + timedelta(days=7), status=FindingStatus.CLOSED),
    ]
    assert [f.id for f in svc.findings_due_soon(findings, TODAY)] == [1]


def test_upcoming_audits_window_excludes_completed():
    svc = ReminderService()
    audits = [
        Audit(id=1, next_due_date=TODAY + timedelta(days=30)),
        Audit(id=2, next_due_date=TODAY + timedelta(days=31)),
        Audit(id=3, next_due_date=TODAY + timedelta(days=3), status=AuditStatus.CLOSED),
        Audit(id=4, next_due_date=TODAY),
    ]
    assert [a.id for a in svc.upcoming_audits(audits, TODAY)] == [4, 1]
