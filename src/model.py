"""
model.py

Domain models for the Vessel Audit Monitor.

Entities
--------
- Vessel
- AuditType, AuditParty, AuditCompany, Auditor, AuditResult   (lookups)
- Audit, AuditAuditor, AuditAttachment
- Finding, Attachment
- User, Role, Page, Permission, RolePermission                (access control)
- CompanySettings
- NotificationLog

All models are plain dataclasses; the SQLAlchemy mapping lives in
infrastructure.py.  Integer primary keys are assigned by the database, so a
freshly constructed entity has id None until it is flushed.
Timestamps are always stored in UTC.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from enum import Enum
from typing import Optional


def _now() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------


class UserRole(str, Enum):
    """Built-in roles seeded on first start.  Further roles may be added at runtime."""
    ADMIN = "Admin"
    ENCODER = "Encoder"
    VIEWER = "Viewer"
    AUDITOR = "Auditor"


class VesselStatus(str, Enum):
    ACTIVE = "Active"
    INACTIVE = "Inactive"


class AuditStatus(str, Enum):
    PLANNED = "Planned"
    ONGOING = "Ongoing"
    COMPLETED = "Completed"
    CLOSED = "Closed"


class FindingCategory(str, Enum):
    MAJOR = "Major"
    MINOR = "Minor"
    OBSERVATION = "Observation"


class FindingStatus(str, Enum):
    """
    Lifecycle status of a finding.

    OVERDUE is a derived side-state: a finding is Overdue exactly when its
    target date has passed and it has not been closed.
    """
    OPEN = "Open"
    IN_PROGRESS = "In Progress"
    SUBMITTED = "Submitted"
    CLOSED = "Closed"
    OVERDUE = "Overdue"


class Action(str, Enum):
    """Permission names of the access-control matrix."""
    VIEW = "view"
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
    CLOSE = "close"
    REOPEN = "reopen"
    UPLOAD = "upload"


class Resource(str, Enum):
    """Page paths of the access-control matrix."""
    DASHBOARD = "/dashboard"
    VESSELS = "/vessels"
    AUDIT_TYPES = "/audit-types"
    AUDIT_PARTIES = "/audit-parties"
    AUDIT_COMPANIES = "/audit-companies"
    AUDITORS = "/auditors"
    AUDIT_RESULTS = "/audit-results"
    AUDITS = "/audits"
    FINDINGS = "/findings"
    USERS = "/users"
    ROLES = "/roles"
    SETTINGS = "/settings"


class NotificationType(str, Enum):
    UPCOMING_AUDIT = "upcoming_audit"
    FINDING_DUE_SOON = "finding_due_soon"
    FINDING_OVERDUE = "finding_overdue"


# ---------------------------------------------------------------------------
# Vessels and lookup entities
# ---------------------------------------------------------------------------


@dataclass
class Vessel:
    id: Optional[int] = None
    vessel_name: str = ""
    vessel_code: str = ""                       # unique
    registration_number: Optional[str] = None
    status: VesselStatus = VesselStatus.ACTIVE
    created_at: datetime = field(default_factory=_now)
    updated_at: datetime = field(default_factory=_now)


@dataclass
class AuditType:
    id: Optional[int] = None
    type_name: str = ""                         # unique
    description: Optional[str] = None
    is_active: bool = True
    created_at: datetime = field(default_factory=_now)
    updated_at: datetime = field(default_factory=_now)


@dataclass
class AuditParty:
    """The party on whose behalf an audit is carried out (flag state, class, internal...)."""
    id: Optional[int] = None
    party_name: str = ""                        # unique
    description: Optional[str] = None
    is_active: bool = True
    created_at: datetime = field(default_factory=_now)
    updated_at: datetime = field(default_factory=_now)
    deleted_at: Optional[datetime] = None
    deleted_by: Optional[int] = None            # FK → User.id


@dataclass
class AuditCompany:
    id: Optional[int] = None
    company_name: str = ""
    contact_person: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None
    is_active: bool = True
    created_at: datetime = field(default_factory=_now)
    updated_at: datetime = field(default_factory=_now)


@dataclass
class Auditor:
    id: Optional[int] = None
    audit_company_id: Optional[int] = None      # FK → AuditCompany.id
    auditor_name: str = ""
    certification: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    specialization: Optional[str] = None
    is_active: bool = True
    created_at: datetime = field(default_factory=_now)
    updated_at: datetime = field(default_factory=_now)


@dataclass
class AuditResult:
    id: Optional[int] = None
    result_name: str = ""                       # unique
    description: Optional[str] = None
    is_active: bool = True
    created_at: datetime = field(default_factory=_now)
    updated_at: datetime = field(default_factory=_now)


# ---------------------------------------------------------------------------
# Audits
# ---------------------------------------------------------------------------


@dataclass
class Audit:
    """
    The central record: one audit of one vessel.

    audit_reference is unique.  When the caller does not supply one it is
    generated from the row id once that id is known (AUD-<YY>-<00000>).
    """
    id: Optional[int] = None
    audit_reference: Optional[str] = None
    vessel_id: int = 0                          # FK → Vessel.id
    audit_type_id: int = 0                      # FK → AuditType.id
    audit_party_id: int = 0                     # FK → AuditParty.id
    audit_company_id: Optional[int] = None      # FK → AuditCompany.id
    audit_start_date: Optional[date] = None
    audit_end_date: Optional[date] = None
    next_due_date: Optional[date] = None
    location: Optional[str] = None
    status: AuditStatus = AuditStatus.PLANNED
    audit_result_id: Optional[int] = None       # FK → AuditResult.id
    report_file_path: Optional[str] = None
    remarks: Optional[str] = None
    created_by: Optional[int] = None            # FK → User.id
    created_at: datetime = field(default_factory=_now)
    updated_at: datetime = field(default_factory=_now)
    deleted_at: Optional[datetime] = None
    deleted_by: Optional[int] = None


@dataclass
class AuditAuditor:
    """Assignment of an auditor to an audit, with the role they play on it."""
    id: Optional[int] = None
    audit_id: int = 0                           # FK → Audit.id
    auditor_id: int = 0                         # FK → Auditor.id
    role: str = "Auditor"
    assigned_at: datetime = field(default_factory=_now)


@dataclass
class AuditAttachment:
    id: Optional[int] = None
    audit_id: int = 0                           # FK → Audit.id
    file_path: str = ""
    file_name: str = ""
    file_type: Optional[str] = None
    file_size: Optional[int] = None
    uploaded_by: Optional[int] = None           # FK → User.id
    uploaded_at: datetime = field(default_factory=_now)


# ---------------------------------------------------------------------------
# Findings
# ---------------------------------------------------------------------------


@dataclass
class Finding:
    id: Optional[int] = None
    audit_id: int = 0                           # FK → Audit.id
    category: FindingCategory = FindingCategory.OBSERVATION
    description: str = ""
    root_cause: Optional[str] = None
    corrective_action: Optional[str] = None
    responsible_person: Optional[str] = None
    target_date: Optional[date] = None
    status: FindingStatus = FindingStatus.OPEN
    closure_date: Optional[date] = None         # set by close(), cleared by reopen()
    created_by: Optional[int] = None            # FK → User.id
    created_at: datetime = field(default_factory=_now)
    updated_at: datetime = field(default_factory=_now)
    deleted_at: Optional[datetime] = None
    deleted_by: Optional[int] = None


@dataclass
class Attachment:
    """Evidence file attached to a finding."""
    id: Optional[int] = None
    finding_id: int = 0                         # FK → Finding.id
    file_path: str = ""
    file_name: str = ""
    file_type: Optional[str] = None
    file_size: Optional[int] = None
    uploaded_by: Optional[int] = None           # FK → User.id
    uploaded_at: datetime = field(default_factory=_now)


# ---------------------------------------------------------------------------
# Users & access control
# ---------------------------------------------------------------------------


@dataclass
class Role:
    id: Optional[int] = None
    role_name: str = ""                         # unique
    description: Optional[str] = None
    is_active: bool = True
    created_at: datetime = field(default_factory=_now)
    updated_at: datetime = field(default_factory=_now)


@dataclass
class Page:
    id: Optional[int] = None
    page_name: str = ""
    page_path: str = ""                         # unique; matches a Resource value
    description: Optional[str] = None
    icon: Optional[str] = None
    is_active: bool = True
    display_order: int = 0
    created_at: datetime = field(default_factory=_now)
    updated_at: datetime = field(default_factory=_now)


@dataclass
class Permission:
    id: Optional[int] = None
    permission_name: str = ""                   # unique; matches an Action value
    description: Optional[str] = None
    created_at: datetime = field(default_factory=_now)


@dataclass
class RolePermission:
    id: Optional[int] = None
    role_id: int = 0                            # FK → Role.id
    page_id: int = 0                            # FK → Page.id
    permission_id: int = 0                      # FK → Permission.id


@dataclass
class User:
    id: Optional[int] = None
    name: str = ""
    email: str = ""                             # unique
    password_hash: str = ""
    role_id: int = 0                            # FK → Role.id
    is_active: bool = True
    last_login_at: Optional[datetime] = None
    created_at: datetime = field(default_factory=_now)
    updated_at: datetime = field(default_factory=_now)
    deleted_at: Optional[datetime] = None
    deleted_by: Optional[int] = None


# ---------------------------------------------------------------------------
# Settings & notification bookkeeping
# ---------------------------------------------------------------------------


@dataclass
class CompanySettings:
    """Organisation profile.  A single row; reads fall back to an unsaved default."""
    id: Optional[int] = None
    company_name: str = "Audit Monitoring System"
    company_address: Optional[str] = None
    company_phone: Optional[str] = None
    company_email: Optional[str] = None
    contact_person: Optional[str] = None
    registration_number: Optional[str] = None
    tax_id: Optional[str] = None
    website: Optional[str] = None
    logo_path: Optional[str] = None
    updated_at: datetime = field(default_factory=_now)


@dataclass
class NotificationLog:
    """
    Marker recording the last time a reminder of a given type went out for
    an entity.  The reminder job skips an entity already notified today.
    """
    id: Optional[int] = None
    entity_type: str = ""                       # "audit" | "finding"
    entity_id: int = 0
    notification_type: NotificationType = NotificationType.UPCOMING_AUDIT
    recipient: str = ""
    last_notified_at: datetime = field(default_factory=_now)
