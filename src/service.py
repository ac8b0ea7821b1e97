"""
service.py

Service layer for the Vessel Audit Monitor.

Responsibilities
----------------
Each service class encapsulates the business rules for its domain.
Services receive and return domain model instances (from model.py).
No persistence is handled here — callers are responsible for storing
and retrieving models via the repositories exposed by a Unit of Work.

Services
--------
- VesselService          – Vessel creation and field updates
- LookupService          – Audit types, parties, companies, auditors, results
- AuditService           – Audit lifecycle and reference generation
- FindingService         – Finding status state machine and overdue rules
- SoftDeleteService      – deleted_at / deleted_by toggling
- UserService            – User records (password hashing lives in security.py)
- AccessControlService   – Role → Page → Permission matrix and the can() check
- SettingsService        – Company profile upsert
- DashboardService       – Statistics and chart aggregation
- ReminderService        – Selection rules for the daily reminder job

Design notes
------------
- "Today" is always passed in explicitly by callers that care about it so
  that date rules are deterministic under test.
- Business rule violations raise a ValueError with a descriptive message.
- Methods that would normally persist data return the mutated object(s)
  so the caller can hand them to a repository.
"""

from __future__ import annotations

from collections import Counter, OrderedDict
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from typing import Any, Dict, FrozenSet, Iterable, List, Mapping, Optional, Set, Tuple

from model import (
    Action,
    Audit,
    AuditAuditor,
    AuditCompany,
    AuditParty,
    AuditResult,
    AuditStatus,
    AuditType,
    Auditor,
    CompanySettings,
    Finding,
    FindingCategory,
    FindingStatus,
    NotificationLog,
    Page,
    Permission,
    Resource,
    RolePermission,
    User,
    UserRole,
    Vessel,
    VesselStatus,
)


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------

def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _today() -> date:
    return date.today()


def _apply_changes(entity: Any, changes: Mapping[str, Any], allowed: Iterable[str]) -> Any:
    """Copy whitelisted keys from `changes` onto `entity` and stamp updated_at."""
    allowed = set(allowed)
    relevant = {k: v for k, v in changes.items() if k in allowed}
    if not relevant:
        raise ValueError("No fields to update")
    for key, value in relevant.items():
        setattr(entity, key, value)
    if hasattr(entity, "updated_at"):
        entity.updated_at = _utcnow()
    return entity


# ---------------------------------------------------------------------------
# Pure helpers
# ---------------------------------------------------------------------------

DEFAULT_PAGE = 1
DEFAULT_LIMIT = 10
MAX_LIMIT = 100


@dataclass(frozen=True)
class PaginationParams:
    page: int
    limit: int
    offset: int


def _coerce_positive(value: Any, default: int) -> int:
    try:
        number = int(value)
    except (TypeError, ValueError):
        return default
    return number or default


def pagination_params(page: Any = None, limit: Any = None) -> PaginationParams:
    """
    Normalise page/limit query values.

    Missing, zero or unparseable values fall back to the defaults; the page is
    clamped to >= 1 and the limit to [1, 100].
    """
    valid_page = max(1, _coerce_positive(page, DEFAULT_PAGE))
    valid_limit = min(max(1, _coerce_positive(limit, DEFAULT_LIMIT)), MAX_LIMIT)
    return PaginationParams(
        page=valid_page,
        limit=valid_limit,
        offset=(valid_page - 1) * valid_limit,
    )


def total_pages(total: int, limit: int) -> int:
    return (total + limit - 1) // limit if limit else 0


def generate_audit_reference(audit_id: int, year: int) -> str:
    """AUD-<2-digit year>-<id padded to 5>, e.g. (7, 2026) → AUD-26-00007."""
    return f"AUD-{year % 100:02d}-{audit_id:05d}"


def days_between(d1: date, d2: date) -> int:
    """Signed whole days from d1 to d2."""
    return (d2 - d1).days


def is_overdue(target_date: Optional[date], today: date) -> bool:
    return target_date is not None and target_date < today


def should_mark_as_overdue(
    target_date: Optional[date], status: FindingStatus, today: date
) -> bool:
    if status == FindingStatus.CLOSED:
        return False
    return is_overdue(target_date, today)


def is_within_days(target: Optional[date], days: int, today: date) -> bool:
    return target is not None and today <= target <= today + timedelta(days=days)


def year_to_date_start(today: date) -> date:
    return date(today.year, 1, 1)


def truncate(text: Optional[str], length: int = 100) -> str:
    text = text or ""
    return text if len(text) <= length else text[:length] + "..."


# ---------------------------------------------------------------------------
# VesselService
# ---------------------------------------------------------------------------

class VesselService:

    UPDATABLE = ("vessel_name", "vessel_code", "registration_number", "status")

    def create_vessel(
        self,
        vessel_name: str,
        vessel_code: str,
        registration_number: Optional[str] = None,
        status: VesselStatus = VesselStatus.ACTIVE,
    ) -> Vessel:
        return Vessel(
            vessel_name=vessel_name.strip(),
            vessel_code=vessel_code.strip(),
            registration_number=registration_number or None,
            status=status,
        )

    def update_vessel(self, vessel: Vessel, changes: Mapping[str, Any]) -> Vessel:
        return _apply_changes(vessel, changes, self.UPDATABLE)


# ---------------------------------------------------------------------------
# LookupService
# ---------------------------------------------------------------------------

class LookupService:
    """
    Reference data describing who audits and how.  These entities carry no
    workflow of their own; only field-level rules apply.
    """

    AUDIT_TYPE_FIELDS = ("type_name", "description", "is_active")
    AUDIT_PARTY_FIELDS = ("party_name", "description", "is_active")
    AUDIT_COMPANY_FIELDS = (
        "company_name", "contact_person", "email", "phone", "address", "is_active",
    )
    AUDITOR_FIELDS = (
        "audit_company_id", "auditor_name", "certification", "email", "phone",
        "specialization", "is_active",
    )
    AUDIT_RESULT_FIELDS = ("result_name", "description", "is_active")

    def create_audit_type(self, type_name: str, description: Optional[str], is_active: bool) -> AuditType:
        return AuditType(type_name=type_name.strip(), description=description, is_active=is_active)

    def create_audit_party(self, party_name: str, description: Optional[str], is_active: bool) -> AuditParty:
        return AuditParty(party_name=party_name.strip(), description=description, is_active=is_active)

    def create_audit_company(self, company_name: str, **details: Any) -> AuditCompany:
        company = AuditCompany(company_name=company_name.strip())
        for key, value in details.items():
            if key in self.AUDIT_COMPANY_FIELDS:
                # blank e-mail / phone strings are stored as NULL
                setattr(company, key, value if value != "" else None)
        return company

    def create_auditor(self, auditor_name: str, **details: Any) -> Auditor:
        auditor = Auditor(auditor_name=auditor_name.strip())
        for key, value in details.items():
            if key in self.AUDITOR_FIELDS:
                setattr(auditor, key, value if value != "" else None)
        return auditor

    def create_audit_result(self, result_name: str, description: Optional[str], is_active: bool) -> AuditResult:
        return AuditResult(result_name=result_name.strip(), description=description, is_active=is_active)

    def update(self, entity: Any, changes: Mapping[str, Any], allowed: Iterable[str]) -> Any:
        return _apply_changes(entity, changes, allowed)


# ---------------------------------------------------------------------------
# AuditService
# ---------------------------------------------------------------------------

class AuditService:
    """
    Manages the audit record itself.  Reference generation happens after the
    row has an id, inside the same unit of work as the insert.
    """

    UPDATABLE = (
        "vessel_id", "audit_type_id", "audit_party_id", "audit_company_id",
        "audit_reference", "audit_start_date", "audit_end_date", "next_due_date",
        "location", "status", "audit_result_id", "remarks", "report_file_path",
    )

    @staticmethod
    def _check_dates(audit: Audit) -> None:
        if audit.audit_start_date is None:
            raise ValueError("audit_start_date is required.")
        if audit.audit_end_date and audit.audit_end_date < audit.audit_start_date:
            raise ValueError("audit_end_date must not be before audit_start_date.")

    def create_audit(
        self,
        vessel_id: int,
        audit_type_id: int,
        audit_party_id: int,
        audit_start_date: date,
        created_by: Optional[int],
        audit_reference: Optional[str] = None,
        audit_company_id: Optional[int] = None,
        audit_end_date: Optional[date] = None,
        next_due_date: Optional[date] = None,
        location: Optional[str] = None,
        status: AuditStatus = AuditStatus.PLANNED,
        audit_result_id: Optional[int] = None,
        remarks: Optional[str] = None,
    ) -> Audit:
        """Create and return a new Audit (unsaved, reference possibly pending)."""
        audit = Audit(
            audit_reference=audit_reference.strip() if audit_reference else None,
            vessel_id=vessel_id,
            audit_type_id=audit_type_id,
            audit_party_id=audit_party_id,
            audit_company_id=audit_company_id,
            audit_start_date=audit_start_date,
            audit_end_date=audit_end_date,
            next_due_date=next_due_date,
            location=location,
            status=status,
            audit_result_id=audit_result_id,
            remarks=remarks,
            created_by=created_by,
        )
        self._check_dates(audit)
        return audit

    def assign_reference(self, audit: Audit, today: date) -> Audit:
        """Fill in the generated reference if the caller did not provide one."""
        if audit.id is None:
            raise ValueError("Audit must be persisted before a reference can be generated.")
        if not audit.audit_reference:
            audit.audit_reference = generate_audit_reference(audit.id, today.year)
        return audit

    def update_audit(self, audit: Audit, changes: Mapping[str, Any]) -> Audit:
        _apply_changes(audit, changes, self.UPDATABLE)
        self._check_dates(audit)
        return audit

    def attach_report(self, audit: Audit, report_file_path: str) -> Audit:
        audit.report_file_path = report_file_path
        audit.updated_at = _utcnow()
        return audit

    def assign_auditor(self, audit_id: int, auditor_id: int, role: str) -> AuditAuditor:
        role = (role or "Auditor").strip()
        if len(role) < 2:
            raise ValueError("Role must be at least 2 characters.")
        return AuditAuditor(audit_id=audit_id, auditor_id=auditor_id, role=role)


# ---------------------------------------------------------------------------
# FindingService
# ---------------------------------------------------------------------------

class FindingService:
    """
    Finding status state machine.

    Open ──► In Progress / Submitted ──► Closed
       ╲                                   │
        ╲─► Overdue (derived) ◄── reopen ──╯

    Overdue holds exactly when target_date < today and the finding is not
    Closed.  It is re-evaluated whenever a finding is created, updated or
    read, and in bulk by sweep_overdue().
    """

    UPDATABLE = (
        "audit_id", "category", "description", "root_cause", "corrective_action",
        "responsible_person", "target_date", "status",
    )
    # Statuses the generic update path may write directly
    EDITABLE_STATUSES = frozenset(
        {FindingStatus.OPEN, FindingStatus.IN_PROGRESS, FindingStatus.SUBMITTED}
    )

    def create_finding(
        self,
        audit_id: int,
        category: FindingCategory,
        description: str,
        target_date: Optional[date],
        created_by: Optional[int],
        today: date,
        root_cause: Optional[str] = None,
        corrective_action: Optional[str] = None,
        responsible_person: Optional[str] = None,
        status: FindingStatus = FindingStatus.OPEN,
    ) -> Finding:
        if len(description.strip()) < 10:
            raise ValueError("Description must be at least 10 characters.")
        finding = Finding(
            audit_id=audit_id,
            category=category,
            description=description.strip(),
            root_cause=root_cause,
            corrective_action=corrective_action,
            responsible_person=responsible_person,
            target_date=target_date,
            status=status,
            created_by=created_by,
        )
        if status == FindingStatus.CLOSED:
            finding.closure_date = today
        self.refresh_overdue(finding, today)
        return finding

    def update_finding(self, finding: Finding, changes: Mapping[str, Any], today: date) -> Finding:
        """
        Apply a partial update.  The status may only be moved between Open,
        In Progress and Submitted here; closing and reopening have their own
        operations so that closure_date stays consistent.
        """
        new_status = changes.get("status")
        if new_status is not None:
            new_status = FindingStatus(new_status)
            if finding.status == FindingStatus.CLOSED and new_status != FindingStatus.CLOSED:
                raise ValueError("Finding is closed; use reopen to change its status.")
            if new_status == FindingStatus.CLOSED and finding.status != FindingStatus.CLOSED:
                raise ValueError("Use close to close a finding.")
            if new_status == FindingStatus.OVERDUE:
                raise ValueError("Overdue status is derived from the target date and cannot be set.")
        if "description" in changes and len((changes["description"] or "").strip()) < 10:
            raise ValueError("Description must be at least 10 characters.")
        _apply_changes(finding, changes, self.UPDATABLE)
        self.refresh_overdue(finding, today)
        return finding

    def close_finding(self, finding: Finding, today: date) -> Finding:
        if finding.status == FindingStatus.CLOSED:
            raise ValueError("Finding is already closed.")
        finding.status = FindingStatus.CLOSED
        finding.closure_date = today
        finding.updated_at = _utcnow()
        return finding

    def reopen_finding(self, finding: Finding, today: date) -> Finding:
        if finding.status != FindingStatus.CLOSED:
            raise ValueError("Only closed findings can be reopened.")
        finding.status = (
            FindingStatus.OVERDUE if is_overdue(finding.target_date, today) else FindingStatus.OPEN
        )
        finding.closure_date = None
        finding.updated_at = _utcnow()
        return finding

    def refresh_overdue(self, finding: Finding, today: date) -> bool:
        """
        Force Overdue on a past-due open finding, or lift it again when the
        target date has been moved into the future.  Returns True on change.
        """
        if should_mark_as_overdue(finding.target_date, finding.status, today):
            if finding.status != FindingStatus.OVERDUE:
                finding.status = FindingStatus.OVERDUE
                finding.updated_at = _utcnow()
                return True
        elif finding.status == FindingStatus.OVERDUE:
            finding.status = FindingStatus.OPEN
            finding.updated_at = _utcnow()
            return True
        return False

    def sweep_overdue(self, findings: Iterable[Finding], today: date) -> List[Finding]:
        """Mark every past-due, non-closed, not-yet-overdue finding Overdue."""
        changed = []
        for f in findings:
            if f.deleted_at is not None:
                continue
            if f.status in (FindingStatus.CLOSED, FindingStatus.OVERDUE):
                continue
            if is_overdue(f.target_date, today):
                f.status = FindingStatus.OVERDUE
                f.updated_at = _utcnow()
                changed.append(f)
        return changed


# ---------------------------------------------------------------------------
# SoftDeleteService
# ---------------------------------------------------------------------------

class SoftDeleteService:
    """Toggles the nullable deleted_at / deleted_by pair."""

    def soft_delete(self, entity: Any, label: str, acting_user_id: Optional[int]) -> Any:
        if entity.deleted_at is not None:
            raise ValueError(f"{label} not found or already deleted")
        entity.deleted_at = _utcnow()
        entity.deleted_by = acting_user_id
        return entity

    def restore(self, entity: Any, label: str) -> Any:
        if entity.deleted_at is None:
            raise ValueError(f"{label} not found or not deleted")
        entity.deleted_at = None
        entity.deleted_by = None
        if hasattr(entity, "updated_at"):
            entity.updated_at = _utcnow()
        return entity


# ---------------------------------------------------------------------------
# UserService
# ---------------------------------------------------------------------------

class UserService:

    UPDATABLE = ("name", "email", "role_id", "is_active", "password_hash")

    def create_user(
        self, name: str, email: str, password_hash: str, role_id: int, is_active: bool = True
    ) -> User:
        return User(
            name=name.strip(),
            email=email.strip().lower(),
            password_hash=password_hash,
            role_id=role_id,
            is_active=is_active,
        )

    def update_user(self, user: User, changes: Mapping[str, Any]) -> User:
        if "email" in changes and changes["email"]:
            changes = dict(changes, email=changes["email"].strip().lower())
        return _apply_changes(user, changes, self.UPDATABLE)

    def record_login(self, user: User) -> User:
        user.last_login_at = _utcnow()
        return user

    def can_authenticate(self, user: Optional[User]) -> bool:
        return user is not None and user.is_active and user.deleted_at is None


# ---------------------------------------------------------------------------
# AccessControlService
# ---------------------------------------------------------------------------

Grant = Tuple[str, str]          # (page_path, permission_name)


@dataclass(frozen=True)
class AuthenticatedUser:
    """
    The principal resolved from a bearer token.  role_id is the single
    authoritative role property; role_name is carried for display only.
    """
    id: int
    email: str
    name: str
    role_id: int
    role_name: str
    grants: FrozenSet[Grant] = field(default_factory=frozenset)


def can(user: AuthenticatedUser, action: Action, resource: Resource) -> bool:
    """The one capability check every route guard goes through."""
    return (Resource(resource).value, Action(action).value) in user.grants


_LOOKUPS = (
    Resource.VESSELS,
    Resource.AUDIT_TYPES,
    Resource.AUDIT_PARTIES,
    Resource.AUDIT_COMPANIES,
    Resource.AUDITORS,
    Resource.AUDIT_RESULTS,
)

_READ_PAGES = (Resource.DASHBOARD, *_LOOKUPS, Resource.AUDITS, Resource.FINDINGS, Resource.SETTINGS)


class AccessControlService:
    """
    Maintains the Role → Page → Permission matrix.

    The matrix is the single source of truth for authorization; the defaults
    below are only what a fresh installation is seeded with.
    """

    PAGE_TITLES: Dict[Resource, str] = {
        Resource.DASHBOARD: "Dashboard",
        Resource.VESSELS: "Vessels",
        Resource.AUDIT_TYPES: "Audit Types",
        Resource.AUDIT_PARTIES: "Audit Parties",
        Resource.AUDIT_COMPANIES: "Audit Companies",
        Resource.AUDITORS: "Auditors",
        Resource.AUDIT_RESULTS: "Audit Results",
        Resource.AUDITS: "Audits",
        Resource.FINDINGS: "Findings",
        Resource.USERS: "Users",
        Resource.ROLES: "Roles & Permissions",
        Resource.SETTINGS: "Settings",
    }

    def default_matrix(self) -> Dict[UserRole, Set[Tuple[Resource, Action]]]:
        everything = {(r, a) for r in Resource for a in Action}

        viewer = {(r, Action.VIEW) for r in _READ_PAGES}

        auditor = set(viewer)
        auditor |= {(Resource.AUDITS, Action.UPLOAD), (Resource.FINDINGS, Action.UPLOAD)}

        encoder = set(auditor)
        for r in (*_LOOKUPS, Resource.AUDITS, Resource.FINDINGS):
            encoder |= {(r, Action.CREATE), (r, Action.UPDATE)}
        encoder.add((Resource.FINDINGS, Action.CLOSE))

        return {
            UserRole.ADMIN: everything,
            UserRole.ENCODER: encoder,
            UserRole.AUDITOR: auditor,
            UserRole.VIEWER: viewer,
        }

    def build_grants(
        self,
        role_permissions: Iterable[RolePermission],
        pages: Iterable[Page],
        permissions: Iterable[Permission],
    ) -> FrozenSet[Grant]:
        """Resolve matrix rows into (page_path, permission_name) pairs."""
        page_paths = {p.id: p.page_path for p in pages if p.is_active}
        permission_names = {p.id: p.permission_name for p in permissions}
        return frozenset(
            (page_paths[rp.page_id], permission_names[rp.permission_id])
            for rp in role_permissions
            if rp.page_id in page_paths and rp.permission_id in permission_names
        )

    def replace_permissions(
        self,
        role_id: int,
        pairs: Iterable[Tuple[int, int]],
        pages: Iterable[Page],
        permissions: Iterable[Permission],
    ) -> List[RolePermission]:
        """Build the new matrix rows for a role, validating every referenced id."""
        page_ids = {p.id for p in pages}
        permission_ids = {p.id for p in permissions}
        rows: "OrderedDict[Tuple[int, int], RolePermission]" = OrderedDict()
        for page_id, permission_id in pairs:
            if page_id not in page_ids:
                raise ValueError(f"Page {page_id} does not exist.")
            if permission_id not in permission_ids:
                raise ValueError(f"Permission {permission_id} does not exist.")
            rows[(page_id, permission_id)] = RolePermission(
                role_id=role_id, page_id=page_id, permission_id=permission_id
            )
        return list(rows.values())


# ---------------------------------------------------------------------------
# SettingsService
# ---------------------------------------------------------------------------

class SettingsService:

    UPDATABLE = (
        "company_name", "company_address", "company_phone", "company_email",
        "contact_person", "registration_number", "tax_id", "website", "logo_path",
    )

    def update_settings(self, settings: CompanySettings, changes: Mapping[str, Any]) -> CompanySettings:
        return _apply_changes(settings, changes, self.UPDATABLE)


# ---------------------------------------------------------------------------
# DashboardService
# ---------------------------------------------------------------------------

def _month_key(d: date) -> str:
    return d.strftime("%Y-%m")


def _months_back(today: date, months: int) -> date:
    """First day of the month `months` months before today's month."""
    year, month = today.year, today.month - months
    while month <= 0:
        month += 12
        year -= 1
    return date(year, month, 1)


class DashboardService:
    """Aggregations over already-filtered audits and findings."""

    def audit_stats(self, audits: List[Audit], today: date) -> Dict[str, int]:
        ytd_start = year_to_date_start(today)
        ytd = [a for a in audits if a.audit_start_date and a.audit_start_date >= ytd_start]
        done = (AuditStatus.COMPLETED, AuditStatus.CLOSED)
        return {
            "total_ytd": len(ytd),
            "upcoming_30days": sum(1 for a in ytd if is_within_days(a.next_due_date, 30, today)),
            "completed": sum(1 for a in ytd if a.status == AuditStatus.COMPLETED),
            "overdue": sum(
                1 for a in ytd
                if a.next_due_date and a.next_due_date < today and a.status not in done
            ),
        }

    def finding_stats(self, findings: List[Finding], today: date) -> Dict[str, int]:
        return {
            "total": len(findings),
            "open": sum(1 for f in findings if f.status == FindingStatus.OPEN),
            "overdue": sum(1 for f in findings if f.status == FindingStatus.OVERDUE),
            "closed_this_month": sum(
                1 for f in findings
                if f.status == FindingStatus.CLOSED
                and f.closure_date
                and (f.closure_date.year, f.closure_date.month) == (today.year, today.month)
            ),
        }

    def chart_data(
        self,
        audits: List[Audit],
        findings: List[Finding],
        party_names: Mapping[int, str],
        today: date,
    ) -> Dict[str, List[Dict[str, Any]]]:
        since = _months_back(today, 12)
        monthly = Counter(
            _month_key(a.audit_start_date)
            for a in audits
            if a.audit_start_date and a.audit_start_date >= since
        )
        by_category = Counter(f.category.value for f in findings)
        by_party = Counter(party_names.get(a.audit_party_id) for a in audits)
        return {
            "monthly_audit_trend": [
                {"month": m, "count": monthly[m]} for m in sorted(monthly)
            ],
            "findings_by_category": [
                {"category": c.value, "count": by_category[c.value]}
                for c in FindingCategory
                if by_category[c.value]
            ],
            "audits_by_party": [
                {"party_name": name, "count": count}
                for name, count in sorted(by_party.items(), key=lambda kv: (kv[0] or ""))
            ],
        }

    def findings_trend(
        self,
        audits: List[Audit],
        findings: List[Finding],
        vessel_names: Mapping[int, str],
        type_names: Mapping[int, str],
        today: date,
    ) -> Dict[str, List[Dict[str, Any]]]:
        since = _months_back(today, 12)
        per_audit = Counter(f.audit_id for f in findings)
        grouped: Counter = Counter()
        totals: Counter = Counter()
        for a in audits:
            if not a.audit_start_date or a.audit_start_date < since:
                continue
            month = _month_key(a.audit_start_date)
            key = (month, vessel_names.get(a.vessel_id), type_names.get(a.audit_type_id))
            grouped[key] += per_audit.get(a.id, 0)
            totals[month] += per_audit.get(a.id, 0)
        return {
            "findings_trend": [
                {"month": m, "vessel_name": v, "type_name": t, "finding_count": n}
                for (m, v, t), n in sorted(grouped.items(), key=lambda kv: tuple(x or "" for x in kv[0]))
            ],
            "monthly_totals": [
                {"month": m, "total_findings": totals[m]} for m in sorted(totals)
            ],
        }


# ---------------------------------------------------------------------------
# ReminderService
# ---------------------------------------------------------------------------

class ReminderService:
    """Selection rules for the daily reminder job."""

    UPCOMING_AUDIT_WINDOW_DAYS = 30
    FINDING_DUE_NOTICE_DAYS = 7

    def upcoming_audits(self, audits: Iterable[Audit], today: date) -> List[Audit]:
        done = (AuditStatus.COMPLETED, AuditStatus.CLOSED)
        return sorted(
            (
                a for a in audits
                if a.deleted_at is None
                and a.status not in done
                and is_within_days(a.next_due_date, self.UPCOMING_AUDIT_WINDOW_DAYS, today)
            ),
            key=lambda a: a.next_due_date,
        )

    def findings_due_soon(self, findings: Iterable[Finding], today: date) -> List[Finding]:
        due = today + timedelta(days=self.FINDING_DUE_NOTICE_DAYS)
        return [
            f for f in findings
            if f.deleted_at is None
            and f.target_date == due
            and f.status not in (FindingStatus.CLOSED, FindingStatus.OVERDUE)
        ]

    def overdue_findings(self, findings: Iterable[Finding], today: date) -> List[Finding]:
        return sorted(
            (
                f for f in findings
                if f.deleted_at is None
                and f.status == FindingStatus.OVERDUE
                and is_overdue(f.target_date, today)
            ),
            key=lambda f: f.target_date,
        )

    def already_notified(self, marker: Optional[NotificationLog], today: date) -> bool:
        if marker is None or marker.last_notified_at is None:
            return False
        sent = marker.last_notified_at
        if sent.tzinfo is None:
            # SQLite hands back naive values; they were written in UTC
            sent = sent.replace(tzinfo=timezone.utc)
        return sent.astimezone().date() == today

    def stamp(self, marker: NotificationLog, recipient: str) -> NotificationLog:
        marker.recipient = recipient
        marker.last_notified_at = _utcnow()
        return marker
