"""
application.py

Application layer for the Vessel Audit Monitor.

Overview
--------
The application layer sits between the presentation layer (API / CLI) and the
domain / service layer.  It is responsible for:

  1. Defining clean output DTOs (dataclasses) that carry only the data the
     presentation layer needs; no domain objects are leaked upward.
  2. Declaring abstract Repository interfaces so that the application layer
     remains persistence-agnostic (implementations live in infrastructure.py).
  3. Declaring the UnitOfWork abstraction so that multi-step writes (audit
     insert + reference, permission replacement) are all-or-nothing.
  4. Declaring the ports for side effects: file storage and e-mail delivery.
  5. Implementing Use Case handlers, one class per user-facing operation.

Structure
---------
Exceptions
    ApplicationError, NotFoundError, ConflictError,
    AuthenticationError, AuthorizationError

DTOs
    VesselDTO, AuditTypeDTO, AuditPartyDTO, AuditCompanyDTO, AuditorDTO,
    AuditResultDTO, AuditDTO, AuditDetailDTO, AuditAuditorDTO, AttachmentDTO,
    FindingDTO, FindingDetailDTO, UserDTO, RoleDTO, RoleDetailDTO, PageDTO,
    PermissionDTO, RolePermissionDTO, SettingsDTO, UploadResultDTO, PagedDTO,
    ReminderRunDTO

Ports
    AbstractRepository (+ AbstractAuditRepository, AbstractFindingRepository,
    AbstractRolePermissionRepository), AbstractUnitOfWork,
    AbstractFileStore, AbstractNotifier

Use Cases
    --- Auth & users ---      Login, ResolvePrincipal, ChangePassword,
                              Create/Update/Get/List/Delete/Restore User,
                              ListActiveRoles
    --- Access control ---    Role, Page, Permission CRUD; Get/Assign role
                              permissions; GetPermissionMatrix
    --- Reference data ---    Vessel, AuditType, AuditParty (+restore),
                              AuditCompany, Auditor, AuditResult CRUD
    --- Audits ---            Create/Update/Get/List/Delete/Restore,
                              report upload, attachments, auditor assignment
    --- Findings ---          Create/Update/Get/List/Close/Reopen/Delete/
                              Restore, evidence, overdue sweep
    --- Settings ---          Get/Update
    --- Dashboard ---         Stats, chart data, findings trend
    --- Reminders ---         SendReminders

Design notes
------------
- Use cases return DTOs only; no domain objects cross the application boundary.
- Each use case takes a UnitOfWork; the UoW exposes all repositories and
  commits on success / rolls back on any exception.
- All timestamps flowing out are ISO-8601 strings (UTC), dates are YYYY-MM-DD.
- Business rule violations raised by services as ValueError are translated
  into ApplicationError here.
"""

from __future__ import annotations

import abc
import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Tuple

from model import (
    Attachment,
    Audit,
    AuditAttachment,
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
    NotificationType,
    Page,
    Permission,
    Role,
    User,
    UserRole,
    Vessel,
    VesselStatus,
)
from security import hash_password, verify_password
from service import (
    AccessControlService,
    AuditService,
    AuthenticatedUser,
    DashboardService,
    FindingService,
    LookupService,
    ReminderService,
    SettingsService,
    SoftDeleteService,
    UserService,
    VesselService,
    days_between,
    pagination_params,
    total_pages,
    truncate,
)

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------

class ApplicationError(Exception):
    """Raised when a use case cannot complete due to a business rule violation."""


class NotFoundError(ApplicationError):
    """Raised when a requested entity does not exist."""


class ConflictError(ApplicationError):
    """Raised on duplicates and on deletes blocked by existing references."""


class AuthenticationError(ApplicationError):
    """Raised when the caller cannot be identified."""


class AuthorizationError(ApplicationError):
    """Raised when the acting user lacks the required permission."""


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _fmt(dt: Optional[datetime]) -> Optional[str]:
    """Convert a datetime to an ISO-8601 UTC string, or None."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.isoformat()


def _fmt_date(d: Optional[date]) -> Optional[str]:
    return d.isoformat() if d else None


def _today() -> date:
    return date.today()


# ===========================================================================
# DTO DEFINITIONS
# ===========================================================================

# ---------------------------------------------------------------------------
# Reference data DTOs
# ---------------------------------------------------------------------------

@dataclass
class VesselDTO:
    id: int
    vessel_name: str
    vessel_code: str
    registration_number: Optional[str]
    status: str
    created_at: str
    updated_at: str


@dataclass
class AuditTypeDTO:
    id: int
    type_name: str
    description: Optional[str]
    is_active: bool
    created_at: str
    updated_at: str


@dataclass
class AuditPartyDTO:
    id: int
    party_name: str
    description: Optional[str]
    is_active: bool
    created_at: str
    updated_at: str
    deleted_at: Optional[str]


@dataclass
class AuditCompanyDTO:
    id: int
    company_name: str
    contact_person: Optional[str]
    email: Optional[str]
    phone: Optional[str]
    address: Optional[str]
    is_active: bool
    created_at: str
    updated_at: str


@dataclass
class AuditorDTO:
    id: int
    audit_company_id: Optional[int]
    company_name: Optional[str]
    auditor_name: str
    certification: Optional[str]
    email: Optional[str]
    phone: Optional[str]
    specialization: Optional[str]
    is_active: bool
    created_at: str
    updated_at: str


@dataclass
class AuditResultDTO:
    id: int
    result_name: str
    description: Optional[str]
    is_active: bool
    created_at: str
    updated_at: str


# ---------------------------------------------------------------------------
# Audit DTOs
# ---------------------------------------------------------------------------

@dataclass
class AuditDTO:
    id: int
    audit_reference: Optional[str]
    vessel_id: int
    vessel_name: Optional[str]
    audit_type_id: int
    audit_type_name: Optional[str]
    audit_party_id: int
    audit_party_name: Optional[str]
    audit_company_id: Optional[int]
    audit_company_name: Optional[str]
    audit_start_date: Optional[str]
    audit_end_date: Optional[str]
    next_due_date: Optional[str]
    location: Optional[str]
    status: str
    audit_result_id: Optional[int]
    audit_result_name: Optional[str]
    report_file_path: Optional[str]
    remarks: Optional[str]
    findings_count: int
    created_by: Optional[int]
    created_at: str
    updated_at: str
    deleted_at: Optional[str]


@dataclass
class AuditAuditorDTO:
    id: int
    audit_id: int
    auditor_id: int
    auditor_name: Optional[str]
    company_name: Optional[str]
    role: str
    assigned_at: str


@dataclass
class AttachmentDTO:
    """Shared shape for finding evidence and audit attachments."""
    id: int
    parent_id: int
    file_path: str
    file_name: str
    file_type: Optional[str]
    file_size: Optional[int]
    uploaded_by: Optional[int]
    uploaded_by_name: Optional[str]
    uploaded_at: str


@dataclass
class UploadResultDTO:
    uploaded: List[AttachmentDTO]
    failed: List[str]

    @property
    def message(self) -> str:
        return f"{len(self.uploaded)} file(s) uploaded successfully"


# ---------------------------------------------------------------------------
# Finding DTOs
# ---------------------------------------------------------------------------

@dataclass
class FindingDTO:
    id: int
    audit_id: int
    audit_reference: Optional[str]
    vessel_name: Optional[str]
    audit_type_name: Optional[str]
    category: str
    description: str
    root_cause: Optional[str]
    corrective_action: Optional[str]
    responsible_person: Optional[str]
    target_date: Optional[str]
    status: str
    closure_date: Optional[str]
    created_by: Optional[int]
    created_at: str
    updated_at: str
    deleted_at: Optional[str]


@dataclass
class FindingDetailDTO(FindingDTO):
    attachments: List[AttachmentDTO] = field(default_factory=list)


@dataclass
class AuditDetailDTO(AuditDTO):
    findings: List[FindingDTO] = field(default_factory=list)
    auditors: List[AuditAuditorDTO] = field(default_factory=list)


# ---------------------------------------------------------------------------
# User & access-control DTOs
# ---------------------------------------------------------------------------

@dataclass
class UserDTO:
    id: int
    name: str
    email: str
    role_id: int
    role_name: Optional[str]
    is_active: bool
    last_login_at: Optional[str]
    created_at: str
    updated_at: str
    deleted_at: Optional[str]


@dataclass
class RoleDTO:
    id: int
    role_name: str
    description: Optional[str]
    is_active: bool
    created_at: str
    updated_at: str


@dataclass
class RolePermissionDTO:
    page_id: int
    page_name: str
    page_path: str
    permission_id: int
    permission_name: str


@dataclass
class RoleDetailDTO(RoleDTO):
    permissions: List[RolePermissionDTO] = field(default_factory=list)


@dataclass
class PageDTO:
    id: int
    page_name: str
    page_path: str
    description: Optional[str]
    icon: Optional[str]
    is_active: bool
    display_order: int


@dataclass
class PermissionDTO:
    id: int
    permission_name: str
    description: Optional[str]


@dataclass
class SettingsDTO:
    id: Optional[int]
    company_name: str
    company_address: Optional[str]
    company_phone: Optional[str]
    company_email: Optional[str]
    contact_person: Optional[str]
    registration_number: Optional[str]
    tax_id: Optional[str]
    website: Optional[str]
    logo_path: Optional[str]
    updated_at: str


# ---------------------------------------------------------------------------
# Listing & job DTOs
# ---------------------------------------------------------------------------

@dataclass
class PagedDTO:
    items: List[Any]
    total: int
    page: int
    limit: int
    total_pages: int


@dataclass
class ReminderRunDTO:
    overdue_marked: int = 0
    upcoming_audits: int = 0
    findings_due_soon: int = 0
    overdue_findings: int = 0
    skipped: int = 0
    failed: int = 0


# ===========================================================================
# DTO ASSEMBLERS
# ===========================================================================

@dataclass
class _Names:
    """Display names for foreign keys, resolved once per use case."""
    vessels: Dict[int, str] = field(default_factory=dict)
    audit_types: Dict[int, str] = field(default_factory=dict)
    audit_parties: Dict[int, str] = field(default_factory=dict)
    audit_companies: Dict[int, str] = field(default_factory=dict)
    audit_results: Dict[int, str] = field(default_factory=dict)


class _Assembler:
    """Converts domain model instances into DTOs."""

    @staticmethod
    def vessel(v: Vessel) -> VesselDTO:
        return VesselDTO(
            id=v.id,
            vessel_name=v.vessel_name,
            vessel_code=v.vessel_code,
            registration_number=v.registration_number,
            status=v.status.value,
            created_at=_fmt(v.created_at),
            updated_at=_fmt(v.updated_at),
        )

    @staticmethod
    def audit_type(t: AuditType) -> AuditTypeDTO:
        return AuditTypeDTO(
            id=t.id,
            type_name=t.type_name,
            description=t.description,
            is_active=t.is_active,
            created_at=_fmt(t.created_at),
            updated_at=_fmt(t.updated_at),
        )

    @staticmethod
    def audit_party(p: AuditParty) -> AuditPartyDTO:
        return AuditPartyDTO(
            id=p.id,
            party_name=p.party_name,
            description=p.description,
            is_active=p.is_active,
            created_at=_fmt(p.created_at),
            updated_at=_fmt(p.updated_at),
            deleted_at=_fmt(p.deleted_at),
        )

    @staticmethod
    def audit_company(c: AuditCompany) -> AuditCompanyDTO:
        return AuditCompanyDTO(
            id=c.id,
            company_name=c.company_name,
            contact_person=c.contact_person,
            email=c.email,
            phone=c.phone,
            address=c.address,
            is_active=c.is_active,
            created_at=_fmt(c.created_at),
            updated_at=_fmt(c.updated_at),
        )

    @staticmethod
    def auditor(a: Auditor, company_name: Optional[str] = None) -> AuditorDTO:
        return AuditorDTO(
            id=a.id,
            audit_company_id=a.audit_company_id,
            company_name=company_name,
            auditor_name=a.auditor_name,
            certification=a.certification,
            email=a.email,
            phone=a.phone,
            specialization=a.specialization,
            is_active=a.is_active,
            created_at=_fmt(a.created_at),
            updated_at=_fmt(a.updated_at),
        )

    @staticmethod
    def audit_result(r: AuditResult) -> AuditResultDTO:
        return AuditResultDTO(
            id=r.id,
            result_name=r.result_name,
            description=r.description,
            is_active=r.is_active,
            created_at=_fmt(r.created_at),
            updated_at=_fmt(r.updated_at),
        )

    @staticmethod
    def _audit_fields(a: Audit, names: _Names, findings_count: int) -> Dict[str, Any]:
        return dict(
            id=a.id,
            audit_reference=a.audit_reference,
            vessel_id=a.vessel_id,
            vessel_name=names.vessels.get(a.vessel_id),
            audit_type_id=a.audit_type_id,
            audit_type_name=names.audit_types.get(a.audit_type_id),
            audit_party_id=a.audit_party_id,
            audit_party_name=names.audit_parties.get(a.audit_party_id),
            audit_company_id=a.audit_company_id,
            audit_company_name=names.audit_companies.get(a.audit_company_id),
            audit_start_date=_fmt_date(a.audit_start_date),
            audit_end_date=_fmt_date(a.audit_end_date),
            next_due_date=_fmt_date(a.next_due_date),
            location=a.location,
            status=a.status.value,
            audit_result_id=a.audit_result_id,
            audit_result_name=names.audit_results.get(a.audit_result_id),
            report_file_path=a.report_file_path,
            remarks=a.remarks,
            findings_count=findings_count,
            created_by=a.created_by,
            created_at=_fmt(a.created_at),
            updated_at=_fmt(a.updated_at),
            deleted_at=_fmt(a.deleted_at),
        )

    @staticmethod
    def audit(a: Audit, names: _Names, findings_count: int = 0) -> AuditDTO:
        return AuditDTO(**_Assembler._audit_fields(a, names, findings_count))

    @staticmethod
    def audit_detail(
        a: Audit,
        names: _Names,
        findings: List[FindingDTO],
        auditors: List[AuditAuditorDTO],
    ) -> AuditDetailDTO:
        return AuditDetailDTO(
            **_Assembler._audit_fields(a, names, len(findings)),
            findings=findings,
            auditors=auditors,
        )

    @staticmethod
    def audit_auditor(
        aa: AuditAuditor, auditor: Optional[Auditor], company_name: Optional[str]
    ) -> AuditAuditorDTO:
        return AuditAuditorDTO(
            id=aa.id,
            audit_id=aa.audit_id,
            auditor_id=aa.auditor_id,
            auditor_name=auditor.auditor_name if auditor else None,
            company_name=company_name,
            role=aa.role,
            assigned_at=_fmt(aa.assigned_at),
        )

    @staticmethod
    def attachment(a: Any, parent_id: int, uploader_name: Optional[str]) -> AttachmentDTO:
        return AttachmentDTO(
            id=a.id,
            parent_id=parent_id,
            file_path=a.file_path,
            file_name=a.file_name,
            file_type=a.file_type,
            file_size=a.file_size,
            uploaded_by=a.uploaded_by,
            uploaded_by_name=uploader_name,
            uploaded_at=_fmt(a.uploaded_at),
        )

    @staticmethod
    def _finding_fields(f: Finding, audit: Optional[Audit], names: _Names) -> Dict[str, Any]:
        return dict(
            id=f.id,
            audit_id=f.audit_id,
            audit_reference=audit.audit_reference if audit else None,
            vessel_name=names.vessels.get(audit.vessel_id) if audit else None,
            audit_type_name=names.audit_types.get(audit.audit_type_id) if audit else None,
            category=f.category.value,
            description=f.description,
            root_cause=f.root_cause,
            corrective_action=f.corrective_action,
            responsible_person=f.responsible_person,
            target_date=_fmt_date(f.target_date),
            status=f.status.value,
            closure_date=_fmt_date(f.closure_date),
            created_by=f.created_by,
            created_at=_fmt(f.created_at),
            updated_at=_fmt(f.updated_at),
            deleted_at=_fmt(f.deleted_at),
        )

    @staticmethod
    def finding(f: Finding, audit: Optional[Audit], names: _Names) -> FindingDTO:
        return FindingDTO(**_Assembler._finding_fields(f, audit, names))

    @staticmethod
    def finding_detail(
        f: Finding, audit: Optional[Audit], names: _Names, attachments: List[AttachmentDTO]
    ) -> FindingDetailDTO:
        return FindingDetailDTO(**_Assembler._finding_fields(f, audit, names), attachments=attachments)

    @staticmethod
    def user(u: User, role_name: Optional[str]) -> UserDTO:
        return UserDTO(
            id=u.id,
            name=u.name,
            email=u.email,
            role_id=u.role_id,
            role_name=role_name,
            is_active=u.is_active,
            last_login_at=_fmt(u.last_login_at),
            created_at=_fmt(u.created_at),
            updated_at=_fmt(u.updated_at),
            deleted_at=_fmt(u.deleted_at),
        )

    @staticmethod
    def role(r: Role) -> RoleDTO:
        return RoleDTO(
            id=r.id,
            role_name=r.role_name,
            description=r.description,
            is_active=r.is_active,
            created_at=_fmt(r.created_at),
            updated_at=_fmt(r.updated_at),
        )

    @staticmethod
    def role_detail(r: Role, permissions: List[RolePermissionDTO]) -> RoleDetailDTO:
        base = _Assembler.role(r)
        return RoleDetailDTO(**base.__dict__, permissions=permissions)

    @staticmethod
    def page(p: Page) -> PageDTO:
        return PageDTO(
            id=p.id,
            page_name=p.page_name,
            page_path=p.page_path,
            description=p.description,
            icon=p.icon,
            is_active=p.is_active,
            display_order=p.display_order,
        )

    @staticmethod
    def permission(p: Permission) -> PermissionDTO:
        return PermissionDTO(id=p.id, permission_name=p.permission_name, description=p.description)

    @staticmethod
    def settings(s: CompanySettings) -> SettingsDTO:
        return SettingsDTO(
            id=s.id,
            company_name=s.company_name,
            company_address=s.company_address,
            company_phone=s.company_phone,
            company_email=s.company_email,
            contact_person=s.contact_person,
            registration_number=s.registration_number,
            tax_id=s.tax_id,
            website=s.website,
            logo_path=s.logo_path,
            updated_at=_fmt(s.updated_at),
        )


# ===========================================================================
# REPOSITORY INTERFACES
# ===========================================================================

class AbstractRepository(abc.ABC):
    """
    Generic persistence port.  `criteria` are exact-match column filters,
    e.g. find_one(vessel_code="MV-01") or count_where(vessel_id=3).
    add() makes the entity's id available immediately.
    """
    @abc.abstractmethod
    def get(self, entity_id: int) -> Optional[Any]: ...
    @abc.abstractmethod
    def add(self, entity: Any) -> None: ...
    @abc.abstractmethod
    def delete(self, entity: Any) -> None: ...
    @abc.abstractmethod
    def list_all(self) -> List[Any]: ...
    @abc.abstractmethod
    def find_one(self, **criteria: Any) -> Optional[Any]: ...
    @abc.abstractmethod
    def find_all(self, **criteria: Any) -> List[Any]: ...
    @abc.abstractmethod
    def count_where(self, **criteria: Any) -> int: ...


@dataclass
class AuditFilters:
    vessel_id: Optional[int] = None
    audit_type_id: Optional[int] = None
    audit_party_id: Optional[int] = None
    status: Optional[AuditStatus] = None
    date_from: Optional[date] = None
    date_to: Optional[date] = None


@dataclass
class FindingFilters:
    audit_id: Optional[int] = None
    category: Optional[FindingCategory] = None
    status: Optional[FindingStatus] = None


class AbstractAuditRepository(AbstractRepository):
    @abc.abstractmethod
    def search(
        self,
        filters: AuditFilters,
        include_deleted: bool = False,
        offset: Optional[int] = None,
        limit: Optional[int] = None,
    ) -> Tuple[List[Audit], int]: ...


class AbstractFindingRepository(AbstractRepository):
    @abc.abstractmethod
    def search(
        self,
        filters: FindingFilters,
        include_deleted: bool = False,
        offset: Optional[int] = None,
        limit: Optional[int] = None,
    ) -> Tuple[List[Finding], int]: ...
    @abc.abstractmethod
    def list_for_audits(self, audit_ids: Iterable[int]) -> List[Finding]: ...
    @abc.abstractmethod
    def count_by_audit(self, audit_ids: Iterable[int]) -> Dict[int, int]: ...


class AbstractRolePermissionRepository(AbstractRepository):
    @abc.abstractmethod
    def delete_for_role(self, role_id: int) -> None: ...


# ===========================================================================
# UNIT OF WORK
# ===========================================================================

class AbstractUnitOfWork(abc.ABC):
    """
    Groups all repositories under a single transactional boundary.
    Use as a context manager:

        with uow:
            uow.audits.add(audit)
            uow.commit()
    """
    vessels: AbstractRepository
    audit_types: AbstractRepository
    audit_parties: AbstractRepository
    audit_companies: AbstractRepository
    auditors: AbstractRepository
    audit_results: AbstractRepository
    audits: AbstractAuditRepository
    audit_auditors: AbstractRepository
    audit_attachments: AbstractRepository
    findings: AbstractFindingRepository
    attachments: AbstractRepository
    users: AbstractRepository
    roles: AbstractRepository
    pages: AbstractRepository
    permissions: AbstractRepository
    role_permissions: AbstractRolePermissionRepository
    settings: AbstractRepository
    notification_logs: AbstractRepository

    def __enter__(self) -> "AbstractUnitOfWork":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        if exc_type:
            self.rollback()
        else:
            self.commit()

    @abc.abstractmethod
    def commit(self) -> None: ...

    @abc.abstractmethod
    def rollback(self) -> None: ...

    @abc.abstractmethod
    def flush(self) -> None:
        """Push pending changes so later queries in the same block see them."""


# ===========================================================================
# SIDE-EFFECT PORTS
# ===========================================================================

@dataclass
class IncomingFile:
    filename: str
    content_type: Optional[str]
    content: bytes

    @property
    def size(self) -> int:
        return len(self.content)


@dataclass
class StoredFile:
    file_path: str          # public path, e.g. /uploads/findings/x_1700000000000_ab12cd.pdf
    file_name: str          # original client name
    file_type: Optional[str]
    file_size: int


class AbstractFileStore(abc.ABC):
    @abc.abstractmethod
    def validate(self, file: IncomingFile) -> None:
        """Raise ValueError if the file type or size is not acceptable."""
    @abc.abstractmethod
    def save(self, folder: str, file: IncomingFile) -> StoredFile: ...
    @abc.abstractmethod
    def delete(self, file_path: str) -> bool: ...


class AbstractNotifier(abc.ABC):
    @abc.abstractmethod
    def upcoming_audit(self, to: str, details: Dict[str, Any]) -> None: ...
    @abc.abstractmethod
    def finding_due(self, to: str, details: Dict[str, Any]) -> None: ...
    @abc.abstractmethod
    def finding_overdue(self, to: str, details: Dict[str, Any]) -> None: ...


# ===========================================================================
# SERVICE SINGLETONS (shared across use cases)
# ===========================================================================

_vessel_svc = VesselService()
_lookup_svc = LookupService()
_audit_svc = AuditService()
_finding_svc = FindingService()
_soft_delete_svc = SoftDeleteService()
_user_svc = UserService()
_access_svc = AccessControlService()
_settings_svc = SettingsService()
_dashboard_svc = DashboardService()
_reminder_svc = ReminderService()


# ===========================================================================
# USE CASE HELPERS
# ===========================================================================

def _get_or_raise(repo: AbstractRepository, entity_id: int, label: str) -> Any:
    entity = repo.get(entity_id)
    if entity is None:
        raise NotFoundError(f"{label} not found")
    return entity


def _get_live_or_raise(repo: AbstractRepository, entity_id: int, label: str) -> Any:
    """Like _get_or_raise, but soft-deleted rows count as missing."""
    entity = repo.get(entity_id)
    if entity is None or entity.deleted_at is not None:
        raise NotFoundError(f"{label} not found")
    return entity


def _ensure_unique(
    repo: AbstractRepository, message: str, exclude_id: Optional[int] = None, **criteria: Any
) -> None:
    existing = repo.find_one(**criteria)
    if existing is not None and existing.id != exclude_id:
        raise ConflictError(message)


def _ensure_unreferenced(count: int, message: str) -> None:
    if count:
        raise ConflictError(message)


def _business(fn, *args, **kwargs):
    """Run a service call, translating ValueError into ApplicationError."""
    try:
        return fn(*args, **kwargs)
    except ValueError as exc:
        raise ApplicationError(str(exc)) from exc


def _load_names(uow: AbstractUnitOfWork) -> _Names:
    return _Names(
        vessels={v.id: v.vessel_name for v in uow.vessels.list_all()},
        audit_types={t.id: t.type_name for t in uow.audit_types.list_all()},
        audit_parties={p.id: p.party_name for p in uow.audit_parties.list_all()},
        audit_companies={c.id: c.company_name for c in uow.audit_companies.list_all()},
        audit_results={r.id: r.result_name for r in uow.audit_results.list_all()},
    )


def _user_names(uow: AbstractUnitOfWork, user_ids: Iterable[Optional[int]]) -> Dict[int, str]:
    names = {}
    for uid in {u for u in user_ids if u is not None}:
        user = uow.users.get(uid)
        if user is not None:
            names[uid] = user.name
    return names


def _check_audit_references(uow: AbstractUnitOfWork, audit: Audit) -> None:
    """Every foreign key of an audit must point at an existing, usable row."""
    _get_or_raise(uow.vessels, audit.vessel_id, "Vessel")
    _get_or_raise(uow.audit_types, audit.audit_type_id, "Audit type")
    _get_live_or_raise(uow.audit_parties, audit.audit_party_id, "Audit party")
    if audit.audit_company_id is not None:
        _get_or_raise(uow.audit_companies, audit.audit_company_id, "Audit company")
    if audit.audit_result_id is not None:
        _get_or_raise(uow.audit_results, audit.audit_result_id, "Audit result")


def _refresh_findings(uow: AbstractUnitOfWork, findings: Iterable[Finding], today: date) -> None:
    """Lazy overdue recomputation on read; changed rows are saved with the UoW."""
    for f in findings:
        if f.deleted_at is None and _finding_svc.refresh_overdue(f, today):
            logger.debug("Finding %s status refreshed to %s", f.id, f.status.value)


def _paged(items: List[Any], total: int, page: int, limit: int) -> PagedDTO:
    return PagedDTO(items=items, total=total, page=page, limit=limit, total_pages=total_pages(total, limit))


def _role_permission_dtos(uow: AbstractUnitOfWork, role_id: int) -> List[RolePermissionDTO]:
    pages = {p.id: p for p in uow.pages.list_all()}
    perms = {p.id: p for p in uow.permissions.list_all()}
    rows = []
    for rp in uow.role_permissions.find_all(role_id=role_id):
        page, perm = pages.get(rp.page_id), perms.get(rp.permission_id)
        if page is None or perm is None:
            continue
        rows.append(
            RolePermissionDTO(
                page_id=page.id,
                page_name=page.page_name,
                page_path=page.page_path,
                permission_id=perm.id,
                permission_name=perm.permission_name,
            )
        )
    return sorted(rows, key=lambda r: (pages[r.page_id].display_order, r.page_path, r.permission_name))


# ===========================================================================
# USE CASES — AUTHENTICATION & USERS
# ===========================================================================

@dataclass
class LoginCommand:
    email: str
    password: str


class LoginUseCase:
    """Verify credentials and return the user; token issuing is the caller's job."""

    def execute(self, cmd: LoginCommand, uow: AbstractUnitOfWork) -> UserDTO:
        with uow:
            user = uow.users.find_one(email=cmd.email.strip().lower())
            if not _user_svc.can_authenticate(user) or not verify_password(
                cmd.password, user.password_hash
            ):
                logger.info("Failed login attempt for %s", cmd.email)
                raise AuthenticationError("Invalid email or password")
            _user_svc.record_login(user)
            role = uow.roles.get(user.role_id)
            uow.commit()
            return _Assembler.user(user, role.role_name if role else None)


class ResolvePrincipalUseCase:
    """Load the acting user and their grants from the access-control matrix."""

    def execute(self, user_id: int, uow: AbstractUnitOfWork) -> AuthenticatedUser:
        with uow:
            user = uow.users.get(user_id)
            if not _user_svc.can_authenticate(user):
                raise AuthenticationError("Invalid or expired token")
            role = uow.roles.get(user.role_id)
            grants = frozenset()
            if role is not None and role.is_active:
                grants = _access_svc.build_grants(
                    uow.role_permissions.find_all(role_id=role.id),
                    uow.pages.list_all(),
                    uow.permissions.list_all(),
                )
            return AuthenticatedUser(
                id=user.id,
                email=user.email,
                name=user.name,
                role_id=user.role_id,
                role_name=role.role_name if role else "",
                grants=grants,
            )


@dataclass
class ChangePasswordCommand:
    user_id: int
    current_password: str
    new_password: str


class ChangePasswordUseCase:
    def execute(self, cmd: ChangePasswordCommand, uow: AbstractUnitOfWork) -> None:
        with uow:
            user = _get_live_or_raise(uow.users, cmd.user_id, "User")
            if not verify_password(cmd.current_password, user.password_hash):
                raise ApplicationError("Current password is incorrect")
            if cmd.current_password == cmd.new_password:
                raise ApplicationError("New password must be different from the current password")
            _user_svc.update_user(user, {"password_hash": hash_password(cmd.new_password)})
            uow.commit()


@dataclass
class CreateUserCommand:
    name: str
    email: str
    password: str
    role_id: int
    is_active: bool = True


class CreateUserUseCase:
    def execute(self, cmd: CreateUserCommand, uow: AbstractUnitOfWork) -> UserDTO:
        with uow:
            role = _get_or_raise(uow.roles, cmd.role_id, "Role")
            _ensure_unique(uow.users, "Email already exists", email=cmd.email.strip().lower())
            user = _user_svc.create_user(
                name=cmd.name,
                email=cmd.email,
                password_hash=hash_password(cmd.password),
                role_id=role.id,
                is_active=cmd.is_active,
            )
            uow.users.add(user)
            uow.commit()
            return _Assembler.user(user, role.role_name)


@dataclass
class UpdateUserCommand:
    user_id: int
    changes: Dict[str, Any]


class UpdateUserUseCase:
    def execute(self, cmd: UpdateUserCommand, uow: AbstractUnitOfWork) -> UserDTO:
        with uow:
            user = _get_live_or_raise(uow.users, cmd.user_id, "User")
            changes = dict(cmd.changes)
            if changes.get("email"):
                _ensure_unique(
                    uow.users, "Email already exists",
                    exclude_id=user.id, email=changes["email"].strip().lower(),
                )
            if changes.get("role_id") is not None:
                _get_or_raise(uow.roles, changes["role_id"], "Role")
            password = changes.pop("password", None)
            if password:
                changes["password_hash"] = hash_password(password)
            _business(_user_svc.update_user, user, changes)
            uow.commit()
            role = uow.roles.get(user.role_id)
            return _Assembler.user(user, role.role_name if role else None)


class GetUserUseCase:
    def execute(self, user_id: int, uow: AbstractUnitOfWork) -> UserDTO:
        with uow:
            user = _get_live_or_raise(uow.users, user_id, "User")
            role = uow.roles.get(user.role_id)
            return _Assembler.user(user, role.role_name if role else None)


class ListUsersUseCase:
    def execute(self, uow: AbstractUnitOfWork, include_deleted: bool = False) -> List[UserDTO]:
        with uow:
            roles = {r.id: r.role_name for r in uow.roles.list_all()}
            users = [
                u for u in uow.users.list_all()
                if include_deleted or u.deleted_at is None
            ]
            return [_Assembler.user(u, roles.get(u.role_id)) for u in sorted(users, key=lambda u: u.name)]


@dataclass
class DeleteUserCommand:
    user_id: int
    acting_user_id: int


class DeleteUserUseCase:
    def execute(self, cmd: DeleteUserCommand, uow: AbstractUnitOfWork) -> None:
        with uow:
            if cmd.user_id == cmd.acting_user_id:
                raise ApplicationError("You cannot delete your own account")
            user = _get_or_raise(uow.users, cmd.user_id, "User")
            _business(_soft_delete_svc.soft_delete, user, "User", cmd.acting_user_id)
            uow.commit()


class RestoreUserUseCase:
    def execute(self, user_id: int, uow: AbstractUnitOfWork) -> UserDTO:
        with uow:
            user = _get_or_raise(uow.users, user_id, "User")
            _business(_soft_delete_svc.restore, user, "User")
            uow.commit()
            role = uow.roles.get(user.role_id)
            return _Assembler.user(user, role.role_name if role else None)


class ListActiveRolesUseCase:
    def execute(self, uow: AbstractUnitOfWork) -> List[RoleDTO]:
        with uow:
            roles = [r for r in uow.roles.list_all() if r.is_active]
            return [_Assembler.role(r) for r in sorted(roles, key=lambda r: r.role_name)]


# ===========================================================================
# USE CASES — ACCESS CONTROL (roles, pages, permissions)
# ===========================================================================

@dataclass
class CreateRoleCommand:
    role_name: str
    description: Optional[str] = None
    is_active: bool = True


class CreateRoleUseCase:
    def execute(self, cmd: CreateRoleCommand, uow: AbstractUnitOfWork) -> RoleDTO:
        with uow:
            name = cmd.role_name.strip()
            _ensure_unique(uow.roles, "Role name already exists", role_name=name)
            role = Role(role_name=name, description=cmd.description, is_active=cmd.is_active)
            uow.roles.add(role)
            uow.commit()
            return _Assembler.role(role)


@dataclass
class UpdateRoleCommand:
    role_id: int
    changes: Dict[str, Any]


class UpdateRoleUseCase:
    def execute(self, cmd: UpdateRoleCommand, uow: AbstractUnitOfWork) -> RoleDTO:
        with uow:
            role = _get_or_raise(uow.roles, cmd.role_id, "Role")
            if cmd.changes.get("role_name"):
                _ensure_unique(
                    uow.roles, "Role name already exists",
                    exclude_id=role.id, role_name=cmd.changes["role_name"].strip(),
                )
            _business(_lookup_svc.update, role, cmd.changes, ("role_name", "description", "is_active"))
            uow.commit()
            return _Assembler.role(role)


class GetRoleUseCase:
    def execute(self, role_id: int, uow: AbstractUnitOfWork) -> RoleDetailDTO:
        with uow:
            role = _get_or_raise(uow.roles, role_id, "Role")
            return _Assembler.role_detail(role, _role_permission_dtos(uow, role.id))


class ListRolesUseCase:
    def execute(self, uow: AbstractUnitOfWork) -> List[RoleDTO]:
        with uow:
            return [_Assembler.role(r) for r in sorted(uow.roles.list_all(), key=lambda r: r.role_name)]


class DeleteRoleUseCase:
    def execute(self, role_id: int, uow: AbstractUnitOfWork) -> None:
        with uow:
            role = _get_or_raise(uow.roles, role_id, "Role")
            count = uow.users.count_where(role_id=role.id)
            _ensure_unreferenced(count, f"Cannot delete role. It is assigned to {count} user(s).")
            uow.role_permissions.delete_for_role(role.id)
            uow.roles.delete(role)
            uow.commit()


class GetRolePermissionsUseCase:
    def execute(self, role_id: int, uow: AbstractUnitOfWork) -> List[RolePermissionDTO]:
        with uow:
            _get_or_raise(uow.roles, role_id, "Role")
            return _role_permission_dtos(uow, role_id)


@dataclass
class AssignRolePermissionsCommand:
    role_id: int
    pairs: List[Tuple[int, int]]        # (page_id, permission_id)


class AssignRolePermissionsUseCase:
    """Replace a role's whole permission set in one transaction."""

    def execute(self, cmd: AssignRolePermissionsCommand, uow: AbstractUnitOfWork) -> List[RolePermissionDTO]:
        with uow:
            role = _get_or_raise(uow.roles, cmd.role_id, "Role")
            rows = _business(
                _access_svc.replace_permissions,
                role.id,
                cmd.pairs,
                uow.pages.list_all(),
                uow.permissions.list_all(),
            )
            uow.role_permissions.delete_for_role(role.id)
            for row in rows:
                uow.role_permissions.add(row)
            uow.commit()
            logger.info("Role %s permissions replaced (%d grants)", role.role_name, len(rows))
            return _role_permission_dtos(uow, role.id)


class GetPermissionMatrixUseCase:
    """Every role with its grants, for the administration screen."""

    def execute(self, uow: AbstractUnitOfWork) -> List[RoleDetailDTO]:
        with uow:
            return [
                _Assembler.role_detail(r, _role_permission_dtos(uow, r.id))
                for r in sorted(uow.roles.list_all(), key=lambda r: r.role_name)
            ]


@dataclass
class CreatePageCommand:
    page_name: str
    page_path: str
    description: Optional[str] = None
    icon: Optional[str] = None
    is_active: bool = True
    display_order: int = 0


class CreatePageUseCase:
    def execute(self, cmd: CreatePageCommand, uow: AbstractUnitOfWork) -> PageDTO:
        with uow:
            _ensure_unique(uow.pages, "Page path already exists", page_path=cmd.page_path)
            page = Page(
                page_name=cmd.page_name.strip(),
                page_path=cmd.page_path,
                description=cmd.description,
                icon=cmd.icon,
                is_active=cmd.is_active,
                display_order=cmd.display_order,
            )
            uow.pages.add(page)
            uow.commit()
            return _Assembler.page(page)


@dataclass
class UpdatePageCommand:
    page_id: int
    changes: Dict[str, Any]


class UpdatePageUseCase:
    FIELDS = ("page_name", "page_path", "description", "icon", "is_active", "display_order")

    def execute(self, cmd: UpdatePageCommand, uow: AbstractUnitOfWork) -> PageDTO:
        with uow:
            page = _get_or_raise(uow.pages, cmd.page_id, "Page")
            if cmd.changes.get("page_path"):
                _ensure_unique(
                    uow.pages, "Page path already exists",
                    exclude_id=page.id, page_path=cmd.changes["page_path"],
                )
            _business(_lookup_svc.update, page, cmd.changes, self.FIELDS)
            uow.commit()
            return _Assembler.page(page)


class GetPageUseCase:
    def execute(self, page_id: int, uow: AbstractUnitOfWork) -> PageDTO:
        with uow:
            return _Assembler.page(_get_or_raise(uow.pages, page_id, "Page"))


class ListPagesUseCase:
    def execute(self, uow: AbstractUnitOfWork) -> List[PageDTO]:
        with uow:
            pages = sorted(uow.pages.list_all(), key=lambda p: (p.display_order, p.page_name))
            return [_Assembler.page(p) for p in pages]


class DeletePageUseCase:
    def execute(self, page_id: int, uow: AbstractUnitOfWork) -> None:
        with uow:
            page = _get_or_raise(uow.pages, page_id, "Page")
            count = uow.role_permissions.count_where(page_id=page.id)
            _ensure_unreferenced(count, f"Cannot delete page. It is used by {count} role permission(s).")
            uow.pages.delete(page)
            uow.commit()


@dataclass
class CreatePermissionCommand:
    permission_name: str
    description: Optional[str] = None


class CreatePermissionUseCase:
    def execute(self, cmd: CreatePermissionCommand, uow: AbstractUnitOfWork) -> PermissionDTO:
        with uow:
            name = cmd.permission_name.strip()
            _ensure_unique(uow.permissions, "Permission name already exists", permission_name=name)
            perm = Permission(permission_name=name, description=cmd.description)
            uow.permissions.add(perm)
            uow.commit()
            return _Assembler.permission(perm)


@dataclass
class UpdatePermissionCommand:
    permission_id: int
    changes: Dict[str, Any]


class UpdatePermissionUseCase:
    def execute(self, cmd: UpdatePermissionCommand, uow: AbstractUnitOfWork) -> PermissionDTO:
        with uow:
            perm = _get_or_raise(uow.permissions, cmd.permission_id, "Permission")
            if cmd.changes.get("permission_name"):
                _ensure_unique(
                    uow.permissions, "Permission name already exists",
                    exclude_id=perm.id, permission_name=cmd.changes["permission_name"].strip(),
                )
            _business(_lookup_svc.update, perm, cmd.changes, ("permission_name", "description"))
            uow.commit()
            return _Assembler.permission(perm)


class GetPermissionUseCase:
    def execute(self, permission_id: int, uow: AbstractUnitOfWork) -> PermissionDTO:
        with uow:
            return _Assembler.permission(_get_or_raise(uow.permissions, permission_id, "Permission"))


class ListPermissionsUseCase:
    def execute(self, uow: AbstractUnitOfWork) -> List[PermissionDTO]:
        with uow:
            perms = sorted(uow.permissions.list_all(), key=lambda p: p.permission_name)
            return [_Assembler.permission(p) for p in perms]


class DeletePermissionUseCase:
    def execute(self, permission_id: int, uow: AbstractUnitOfWork) -> None:
        with uow:
            perm = _get_or_raise(uow.permissions, permission_id, "Permission")
            count = uow.role_permissions.count_where(permission_id=perm.id)
            _ensure_unreferenced(
                count, f"Cannot delete permission. It is used by {count} role permission(s)."
            )
            uow.permissions.delete(perm)
            uow.commit()


# ===========================================================================
# USE CASES — VESSELS
# ===========================================================================

@dataclass
class CreateVesselCommand:
    vessel_name: str
    vessel_code: str
    registration_number: Optional[str] = None
    status: VesselStatus = VesselStatus.ACTIVE


class CreateVesselUseCase:
    def execute(self, cmd: CreateVesselCommand, uow: AbstractUnitOfWork) -> VesselDTO:
        with uow:
            _ensure_unique(uow.vessels, "Vessel code already exists", vessel_code=cmd.vessel_code.strip())
            vessel = _vessel_svc.create_vessel(
                vessel_name=cmd.vessel_name,
                vessel_code=cmd.vessel_code,
                registration_number=cmd.registration_number,
                status=cmd.status,
            )
            uow.vessels.add(vessel)
            uow.commit()
            return _Assembler.vessel(vessel)


@dataclass
class UpdateVesselCommand:
    vessel_id: int
    changes: Dict[str, Any]


class UpdateVesselUseCase:
    def execute(self, cmd: UpdateVesselCommand, uow: AbstractUnitOfWork) -> VesselDTO:
        with uow:
            vessel = _get_or_raise(uow.vessels, cmd.vessel_id, "Vessel")
            if cmd.changes.get("vessel_code"):
                _ensure_unique(
                    uow.vessels, "Vessel code already exists",
                    exclude_id=vessel.id, vessel_code=cmd.changes["vessel_code"].strip(),
                )
            _business(_vessel_svc.update_vessel, vessel, cmd.changes)
            uow.commit()
            return _Assembler.vessel(vessel)


class GetVesselUseCase:
    def execute(self, vessel_id: int, uow: AbstractUnitOfWork) -> VesselDTO:
        with uow:
            return _Assembler.vessel(_get_or_raise(uow.vessels, vessel_id, "Vessel"))


class ListVesselsUseCase:
    def execute(self, uow: AbstractUnitOfWork, status: Optional[VesselStatus] = None) -> List[VesselDTO]:
        with uow:
            vessels = uow.vessels.find_all(status=status) if status else uow.vessels.list_all()
            return [_Assembler.vessel(v) for v in sorted(vessels, key=lambda v: v.vessel_name)]


class DeleteVesselUseCase:
    def execute(self, vessel_id: int, uow: AbstractUnitOfWork) -> None:
        with uow:
            vessel = _get_or_raise(uow.vessels, vessel_id, "Vessel")
            count = uow.audits.count_where(vessel_id=vessel.id)
            _ensure_unreferenced(count, f"Cannot delete vessel. It is referenced by {count} audit(s).")
            uow.vessels.delete(vessel)
            uow.commit()
            logger.info("Vessel %s (%s) deleted", vessel.id, vessel.vessel_code)


# ===========================================================================
# USE CASES — AUDIT TYPES
# ===========================================================================

@dataclass
class CreateAuditTypeCommand:
    type_name: str
    description: Optional[str] = None
    is_active: bool = True


class CreateAuditTypeUseCase:
    def execute(self, cmd: CreateAuditTypeCommand, uow: AbstractUnitOfWork) -> AuditTypeDTO:
        with uow:
            _ensure_unique(uow.audit_types, "Audit type name already exists", type_name=cmd.type_name.strip())
            audit_type = _lookup_svc.create_audit_type(cmd.type_name, cmd.description, cmd.is_active)
            uow.audit_types.add(audit_type)
            uow.commit()
            return _Assembler.audit_type(audit_type)


@dataclass
class UpdateLookupCommand:
    entity_id: int
    changes: Dict[str, Any]


class UpdateAuditTypeUseCase:
    def execute(self, cmd: UpdateLookupCommand, uow: AbstractUnitOfWork) -> AuditTypeDTO:
        with uow:
            audit_type = _get_or_raise(uow.audit_types, cmd.entity_id, "Audit type")
            if cmd.changes.get("type_name"):
                _ensure_unique(
                    uow.audit_types, "Audit type name already exists",
                    exclude_id=audit_type.id, type_name=cmd.changes["type_name"].strip(),
                )
            _business(_lookup_svc.update, audit_type, cmd.changes, LookupService.AUDIT_TYPE_FIELDS)
            uow.commit()
            return _Assembler.audit_type(audit_type)


class GetAuditTypeUseCase:
    def execute(self, type_id: int, uow: AbstractUnitOfWork) -> AuditTypeDTO:
        with uow:
            return _Assembler.audit_type(_get_or_raise(uow.audit_types, type_id, "Audit type"))


class ListAuditTypesUseCase:
    def execute(self, uow: AbstractUnitOfWork, active_only: bool = False) -> List[AuditTypeDTO]:
        with uow:
            types = uow.audit_types.find_all(is_active=True) if active_only else uow.audit_types.list_all()
            return [_Assembler.audit_type(t) for t in sorted(types, key=lambda t: t.type_name)]


class DeleteAuditTypeUseCase:
    def execute(self, type_id: int, uow: AbstractUnitOfWork) -> None:
        with uow:
            audit_type = _get_or_raise(uow.audit_types, type_id, "Audit type")
            count = uow.audits.count_where(audit_type_id=audit_type.id)
            _ensure_unreferenced(count, f"Cannot delete audit type. It is referenced by {count} audit(s).")
            uow.audit_types.delete(audit_type)
            uow.commit()


# ===========================================================================
# USE CASES — AUDIT PARTIES (soft delete)
# ===========================================================================

@dataclass
class CreateAuditPartyCommand:
    party_name: str
    description: Optional[str] = None
    is_active: bool = True


class CreateAuditPartyUseCase:
    def execute(self, cmd: CreateAuditPartyCommand, uow: AbstractUnitOfWork) -> AuditPartyDTO:
        with uow:
            _ensure_unique(
                uow.audit_parties, "Audit party name already exists", party_name=cmd.party_name.strip()
            )
            party = _lookup_svc.create_audit_party(cmd.party_name, cmd.description, cmd.is_active)
            uow.audit_parties.add(party)
            uow.commit()
            return _Assembler.audit_party(party)


class UpdateAuditPartyUseCase:
    def execute(self, cmd: UpdateLookupCommand, uow: AbstractUnitOfWork) -> AuditPartyDTO:
        with uow:
            party = _get_live_or_raise(uow.audit_parties, cmd.entity_id, "Audit party")
            if cmd.changes.get("party_name"):
                _ensure_unique(
                    uow.audit_parties, "Audit party name already exists",
                    exclude_id=party.id, party_name=cmd.changes["party_name"].strip(),
                )
            _business(_lookup_svc.update, party, cmd.changes, LookupService.AUDIT_PARTY_FIELDS)
            uow.commit()
            return _Assembler.audit_party(party)


class GetAuditPartyUseCase:
    def execute(self, party_id: int, uow: AbstractUnitOfWork) -> AuditPartyDTO:
        with uow:
            return _Assembler.audit_party(_get_live_or_raise(uow.audit_parties, party_id, "Audit party"))


class ListAuditPartiesUseCase:
    def execute(
        self, uow: AbstractUnitOfWork, include_deleted: bool = False, active_only: bool = False
    ) -> List[AuditPartyDTO]:
        with uow:
            parties = [
                p for p in uow.audit_parties.list_all()
                if (include_deleted or p.deleted_at is None) and (not active_only or p.is_active)
            ]
            return [_Assembler.audit_party(p) for p in sorted(parties, key=lambda p: p.party_name)]


@dataclass
class SoftDeleteCommand:
    entity_id: int
    acting_user_id: int


class DeleteAuditPartyUseCase:
    def execute(self, cmd: SoftDeleteCommand, uow: AbstractUnitOfWork) -> None:
        with uow:
            party = _get_or_raise(uow.audit_parties, cmd.entity_id, "Audit party")
            live_audits = [
                a for a in uow.audits.find_all(audit_party_id=party.id) if a.deleted_at is None
            ]
            _ensure_unreferenced(len(live_audits), "Cannot delete audit party with existing audits")
            _business(_soft_delete_svc.soft_delete, party, "Audit party", cmd.acting_user_id)
            uow.commit()


class RestoreAuditPartyUseCase:
    def execute(self, party_id: int, uow: AbstractUnitOfWork) -> AuditPartyDTO:
        with uow:
            party = _get_or_raise(uow.audit_parties, party_id, "Audit party")
            _business(_soft_delete_svc.restore, party, "Audit party")
            uow.commit()
            return _Assembler.audit_party(party)


# ===========================================================================
# USE CASES — AUDIT COMPANIES & AUDITORS
# ===========================================================================

@dataclass
class CreateAuditCompanyCommand:
    company_name: str
    contact_person: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None
    is_active: bool = True


class CreateAuditCompanyUseCase:
    def execute(self, cmd: CreateAuditCompanyCommand, uow: AbstractUnitOfWork) -> AuditCompanyDTO:
        with uow:
            company = _lookup_svc.create_audit_company(
                cmd.company_name,
                contact_person=cmd.contact_person,
                email=cmd.email,
                phone=cmd.phone,
                address=cmd.address,
                is_active=cmd.is_active,
            )
            uow.audit_companies.add(company)
            uow.commit()
            return _Assembler.audit_company(company)


class UpdateAuditCompanyUseCase:
    def execute(self, cmd: UpdateLookupCommand, uow: AbstractUnitOfWork) -> AuditCompanyDTO:
        with uow:
            company = _get_or_raise(uow.audit_companies, cmd.entity_id, "Audit company")
            _business(_lookup_svc.update, company, cmd.changes, LookupService.AUDIT_COMPANY_FIELDS)
            uow.commit()
            return _Assembler.audit_company(company)


class GetAuditCompanyUseCase:
    def execute(self, company_id: int, uow: AbstractUnitOfWork) -> AuditCompanyDTO:
        with uow:
            return _Assembler.audit_company(_get_or_raise(uow.audit_companies, company_id, "Audit company"))


class ListAuditCompaniesUseCase:
    def execute(self, uow: AbstractUnitOfWork, active_only: bool = False) -> List[AuditCompanyDTO]:
        with uow:
            companies = (
                uow.audit_companies.find_all(is_active=True) if active_only else uow.audit_companies.list_all()
            )
            return [_Assembler.audit_company(c) for c in sorted(companies, key=lambda c: c.company_name)]


class DeleteAuditCompanyUseCase:
    def execute(self, company_id: int, uow: AbstractUnitOfWork) -> None:
        with uow:
            company = _get_or_raise(uow.audit_companies, company_id, "Audit company")
            audits = uow.audits.count_where(audit_company_id=company.id)
            _ensure_unreferenced(audits, f"Cannot delete audit company. It is referenced by {audits} audit(s).")
            auditors = uow.auditors.count_where(audit_company_id=company.id)
            _ensure_unreferenced(
                auditors, f"Cannot delete audit company. It has {auditors} auditor(s)."
            )
            uow.audit_companies.delete(company)
            uow.commit()


@dataclass
class CreateAuditorCommand:
    auditor_name: str
    audit_company_id: Optional[int] = None
    certification: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    specialization: Optional[str] = None
    is_active: bool = True


class CreateAuditorUseCase:
    def execute(self, cmd: CreateAuditorCommand, uow: AbstractUnitOfWork) -> AuditorDTO:
        with uow:
            company = None
            if cmd.audit_company_id is not None:
                company = _get_or_raise(uow.audit_companies, cmd.audit_company_id, "Audit company")
            auditor = _lookup_svc.create_auditor(
                cmd.auditor_name,
                audit_company_id=cmd.audit_company_id,
                certification=cmd.certification,
                email=cmd.email,
                phone=cmd.phone,
                specialization=cmd.specialization,
                is_active=cmd.is_active,
            )
            uow.auditors.add(auditor)
            uow.commit()
            return _Assembler.auditor(auditor, company.company_name if company else None)


class UpdateAuditorUseCase:
    def execute(self, cmd: UpdateLookupCommand, uow: AbstractUnitOfWork) -> AuditorDTO:
        with uow:
            auditor = _get_or_raise(uow.auditors, cmd.entity_id, "Auditor")
            if cmd.changes.get("audit_company_id") is not None:
                _get_or_raise(uow.audit_companies, cmd.changes["audit_company_id"], "Audit company")
            _business(_lookup_svc.update, auditor, cmd.changes, LookupService.AUDITOR_FIELDS)
            uow.commit()
            company = uow.audit_companies.get(auditor.audit_company_id) if auditor.audit_company_id else None
            return _Assembler.auditor(auditor, company.company_name if company else None)


class GetAuditorUseCase:
    def execute(self, auditor_id: int, uow: AbstractUnitOfWork) -> AuditorDTO:
        with uow:
            auditor = _get_or_raise(uow.auditors, auditor_id, "Auditor")
            company = uow.audit_companies.get(auditor.audit_company_id) if auditor.audit_company_id else None
            return _Assembler.auditor(auditor, company.company_name if company else None)


class ListAuditorsUseCase:
    def execute(
        self, uow: AbstractUnitOfWork, audit_company_id: Optional[int] = None, active_only: bool = False
    ) -> List[AuditorDTO]:
        with uow:
            criteria: Dict[str, Any] = {}
            if audit_company_id is not None:
                criteria["audit_company_id"] = audit_company_id
            if active_only:
                criteria["is_active"] = True
            auditors = uow.auditors.find_all(**criteria)
            companies = {c.id: c.company_name for c in uow.audit_companies.list_all()}
            return [
                _Assembler.auditor(a, companies.get(a.audit_company_id))
                for a in sorted(auditors, key=lambda a: a.auditor_name)
            ]


class DeleteAuditorUseCase:
    def execute(self, auditor_id: int, uow: AbstractUnitOfWork) -> None:
        with uow:
            auditor = _get_or_raise(uow.auditors, auditor_id, "Auditor")
            count = uow.audit_auditors.count_where(auditor_id=auditor.id)
            _ensure_unreferenced(
                count, f"Cannot delete auditor. They are assigned to {count} audit(s)."
            )
            uow.auditors.delete(auditor)
            uow.commit()


# ===========================================================================
# USE CASES — AUDIT RESULTS
# ===========================================================================

@dataclass
class CreateAuditResultCommand:
    result_name: str
    description: Optional[str] = None
    is_active: bool = True


class CreateAuditResultUseCase:
    def execute(self, cmd: CreateAuditResultCommand, uow: AbstractUnitOfWork) -> AuditResultDTO:
        with uow:
            _ensure_unique(
                uow.audit_results, "Audit result name already exists", result_name=cmd.result_name.strip()
            )
            result = _lookup_svc.create_audit_result(cmd.result_name, cmd.description, cmd.is_active)
            uow.audit_results.add(result)
            uow.commit()
            return _Assembler.audit_result(result)


class UpdateAuditResultUseCase:
    def execute(self, cmd: UpdateLookupCommand, uow: AbstractUnitOfWork) -> AuditResultDTO:
        with uow:
            result = _get_or_raise(uow.audit_results, cmd.entity_id, "Audit result")
            if cmd.changes.get("result_name"):
                _ensure_unique(
                    uow.audit_results, "Audit result name already exists",
                    exclude_id=result.id, result_name=cmd.changes["result_name"].strip(),
                )
            _business(_lookup_svc.update, result, cmd.changes, LookupService.AUDIT_RESULT_FIELDS)
            uow.commit()
            return _Assembler.audit_result(result)


class GetAuditResultUseCase:
    def execute(self, result_id: int, uow: AbstractUnitOfWork) -> AuditResultDTO:
        with uow:
            return _Assembler.audit_result(_get_or_raise(uow.audit_results, result_id, "Audit result"))


class ListAuditResultsUseCase:
    def execute(self, uow: AbstractUnitOfWork, active_only: bool = False) -> List[AuditResultDTO]:
        with uow:
            results = uow.audit_results.find_all(is_active=True) if active_only else uow.audit_results.list_all()
            return [_Assembler.audit_result(r) for r in sorted(results, key=lambda r: r.result_name)]


class DeleteAuditResultUseCase:
    def execute(self, result_id: int, uow: AbstractUnitOfWork) -> None:
        with uow:
            result = _get_or_raise(uow.audit_results, result_id, "Audit result")
            count = uow.audits.count_where(audit_result_id=result.id)
            _ensure_unreferenced(count, f"Cannot delete audit result. It is used by {count} audit(s).")
            uow.audit_results.delete(result)
            uow.commit()


# ===========================================================================
# USE CASES — AUDITS
# ===========================================================================

@dataclass
class CreateAuditCommand:
    vessel_id: int
    audit_type_id: int
    audit_party_id: int
    audit_start_date: date
    acting_user_id: int
    audit_reference: Optional[str] = None
    audit_company_id: Optional[int] = None
    audit_end_date: Optional[date] = None
    next_due_date: Optional[date] = None
    location: Optional[str] = None
    status: AuditStatus = AuditStatus.PLANNED
    audit_result_id: Optional[int] = None
    remarks: Optional[str] = None


class CreateAuditUseCase:
    """
    Insert the audit and, when no reference was given, derive one from the
    new id.  Both writes share one transaction: either the audit exists with
    its reference or nothing was written.
    """

    def execute(self, cmd: CreateAuditCommand, uow: AbstractUnitOfWork) -> AuditDTO:
        with uow:
            if cmd.audit_reference:
                _ensure_unique(
                    uow.audits, "Audit reference already exists",
                    audit_reference=cmd.audit_reference.strip(),
                )
            audit = _business(
                _audit_svc.create_audit,
                vessel_id=cmd.vessel_id,
                audit_type_id=cmd.audit_type_id,
                audit_party_id=cmd.audit_party_id,
                audit_start_date=cmd.audit_start_date,
                created_by=cmd.acting_user_id,
                audit_reference=cmd.audit_reference,
                audit_company_id=cmd.audit_company_id,
                audit_end_date=cmd.audit_end_date,
                next_due_date=cmd.next_due_date,
                location=cmd.location,
                status=cmd.status,
                audit_result_id=cmd.audit_result_id,
                remarks=cmd.remarks,
            )
            _check_audit_references(uow, audit)
            uow.audits.add(audit)
            if not audit.audit_reference:
                _audit_svc.assign_reference(audit, _today())
                _ensure_unique(
                    uow.audits, "Audit reference already exists",
                    exclude_id=audit.id, audit_reference=audit.audit_reference,
                )
            uow.commit()
            logger.info("Audit %s created for vessel %s", audit.audit_reference, audit.vessel_id)
            return _Assembler.audit(audit, _load_names(uow))


@dataclass
class UpdateAuditCommand:
    audit_id: int
    changes: Dict[str, Any]


class UpdateAuditUseCase:
    def execute(self, cmd: UpdateAuditCommand, uow: AbstractUnitOfWork) -> AuditDTO:
        with uow:
            audit = _get_live_or_raise(uow.audits, cmd.audit_id, "Audit")
            if cmd.changes.get("audit_reference"):
                _ensure_unique(
                    uow.audits, "Audit reference already exists",
                    exclude_id=audit.id, audit_reference=cmd.changes["audit_reference"].strip(),
                )
            _business(_audit_svc.update_audit, audit, cmd.changes)
            _check_audit_references(uow, audit)
            uow.commit()
            counts = uow.findings.count_by_audit([audit.id])
            return _Assembler.audit(audit, _load_names(uow), counts.get(audit.id, 0))


class GetAuditUseCase:
    def execute(self, audit_id: int, uow: AbstractUnitOfWork) -> AuditDetailDTO:
        with uow:
            audit = _get_live_or_raise(uow.audits, audit_id, "Audit")
            names = _load_names(uow)
            findings = [
                f for f in uow.findings.find_all(audit_id=audit.id) if f.deleted_at is None
            ]
            _refresh_findings(uow, findings, _today())
            auditors = {a.id: a for a in uow.auditors.list_all()}
            assignments = [
                _Assembler.audit_auditor(
                    aa,
                    auditors.get(aa.auditor_id),
                    names.audit_companies.get(
                        getattr(auditors.get(aa.auditor_id), "audit_company_id", None)
                    ),
                )
                for aa in uow.audit_auditors.find_all(audit_id=audit.id)
            ]
            finding_dtos = [
                _Assembler.finding(f, audit, names)
                for f in sorted(findings, key=lambda f: f.id)
            ]
            uow.commit()
            return _Assembler.audit_detail(audit, names, finding_dtos, assignments)


@dataclass
class ListAuditsQuery:
    filters: AuditFilters = field(default_factory=AuditFilters)
    page: Any = None
    limit: Any = None
    include_deleted: bool = False


class ListAuditsUseCase:
    def execute(self, query: ListAuditsQuery, uow: AbstractUnitOfWork) -> PagedDTO:
        params = pagination_params(query.page, query.limit)
        with uow:
            audits, total = uow.audits.search(
                query.filters,
                include_deleted=query.include_deleted,
                offset=params.offset,
                limit=params.limit,
            )
            names = _load_names(uow)
            counts = uow.findings.count_by_audit([a.id for a in audits])
            items = [_Assembler.audit(a, names, counts.get(a.id, 0)) for a in audits]
            return _paged(items, total, params.page, params.limit)


class DeleteAuditUseCase:
    def execute(self, cmd: SoftDeleteCommand, uow: AbstractUnitOfWork) -> None:
        with uow:
            audit = _get_or_raise(uow.audits, cmd.entity_id, "Audit")
            _business(_soft_delete_svc.soft_delete, audit, "Audit", cmd.acting_user_id)
            uow.commit()
            logger.info("Audit %s soft-deleted by user %s", audit.audit_reference, cmd.acting_user_id)


class RestoreAuditUseCase:
    def execute(self, audit_id: int, uow: AbstractUnitOfWork) -> AuditDTO:
        with uow:
            audit = _get_or_raise(uow.audits, audit_id, "Audit")
            _business(_soft_delete_svc.restore, audit, "Audit")
            uow.commit()
            counts = uow.findings.count_by_audit([audit.id])
            return _Assembler.audit(audit, _load_names(uow), counts.get(audit.id, 0))


@dataclass
class UploadAuditReportCommand:
    audit_id: int
    file: IncomingFile


class UploadAuditReportUseCase:
    """Store the audit report file and point report_file_path at it."""

    def __init__(self, file_store: AbstractFileStore):
        self._store = file_store

    def execute(self, cmd: UploadAuditReportCommand, uow: AbstractUnitOfWork) -> AuditDTO:
        with uow:
            audit = _get_live_or_raise(uow.audits, cmd.audit_id, "Audit")
            _business(self._store.validate, cmd.file)
            stored = self._store.save("audits", cmd.file)
            previous = audit.report_file_path
            _audit_svc.attach_report(audit, stored.file_path)
            uow.commit()
            if previous and previous != stored.file_path:
                self._store.delete(previous)
            counts = uow.findings.count_by_audit([audit.id])
            return _Assembler.audit(audit, _load_names(uow), counts.get(audit.id, 0))


class ListAuditAttachmentsUseCase:
    def execute(self, audit_id: int, uow: AbstractUnitOfWork) -> List[AttachmentDTO]:
        with uow:
            _get_live_or_raise(uow.audits, audit_id, "Audit")
            rows = sorted(
                uow.audit_attachments.find_all(audit_id=audit_id),
                key=lambda a: a.uploaded_at,
                reverse=True,
            )
            uploaders = _user_names(uow, (a.uploaded_by for a in rows))
            return [_Assembler.attachment(a, a.audit_id, uploaders.get(a.uploaded_by)) for a in rows]


@dataclass
class AddAttachmentsCommand:
    parent_id: int
    files: List[IncomingFile]
    acting_user_id: int


def _store_files(
    store: AbstractFileStore, folder: str, files: List[IncomingFile]
) -> Tuple[List[StoredFile], List[str]]:
    """
    Validate every file up front, then write them one by one.  A write
    failure skips that file and is reported back rather than aborting.
    """
    if not files:
        raise ApplicationError("No files provided")
    for f in files:
        _business(store.validate, f)
    stored, failed = [], []
    for f in files:
        try:
            stored.append(store.save(folder, f))
        except OSError:
            logger.exception("Failed to store upload %s", f.filename)
            failed.append(f.filename)
    return stored, failed


class AddAuditAttachmentsUseCase:
    def __init__(self, file_store: AbstractFileStore):
        self._store = file_store

    def execute(self, cmd: AddAttachmentsCommand, uow: AbstractUnitOfWork) -> UploadResultDTO:
        with uow:
            _get_live_or_raise(uow.audits, cmd.parent_id, "Audit")
            stored, failed = _store_files(self._store, "audits", cmd.files)
            rows = []
            for s in stored:
                row = AuditAttachment(
                    audit_id=cmd.parent_id,
                    file_path=s.file_path,
                    file_name=s.file_name,
                    file_type=s.file_type,
                    file_size=s.file_size,
                    uploaded_by=cmd.acting_user_id,
                )
                uow.audit_attachments.add(row)
                rows.append(row)
            uow.commit()
            uploader = _user_names(uow, [cmd.acting_user_id]).get(cmd.acting_user_id)
            return UploadResultDTO(
                uploaded=[_Assembler.attachment(r, r.audit_id, uploader) for r in rows],
                failed=failed,
            )


@dataclass
class DeleteAttachmentCommand:
    parent_id: int
    attachment_id: int


class DeleteAuditAttachmentUseCase:
    def __init__(self, file_store: AbstractFileStore):
        self._store = file_store

    def execute(self, cmd: DeleteAttachmentCommand, uow: AbstractUnitOfWork) -> None:
        with uow:
            row = uow.audit_attachments.get(cmd.attachment_id)
            if row is None or row.audit_id != cmd.parent_id:
                raise NotFoundError("Attachment not found")
            uow.audit_attachments.delete(row)
            uow.commit()
        # The row is gone; the file is removed on a best-effort basis
        self._store.delete(row.file_path)


class ListAuditAuditorsUseCase:
    def execute(self, audit_id: int, uow: AbstractUnitOfWork) -> List[AuditAuditorDTO]:
        with uow:
            _get_live_or_raise(uow.audits, audit_id, "Audit")
            auditors = {a.id: a for a in uow.auditors.list_all()}
            companies = {c.id: c.company_name for c in uow.audit_companies.list_all()}
            result = []
            for aa in sorted(uow.audit_auditors.find_all(audit_id=audit_id), key=lambda x: x.assigned_at):
                auditor = auditors.get(aa.auditor_id)
                company = companies.get(auditor.audit_company_id) if auditor else None
                result.append(_Assembler.audit_auditor(aa, auditor, company))
            return result


@dataclass
class AssignAuditorCommand:
    audit_id: int
    auditor_id: int
    role: str = "Auditor"


class AssignAuditorUseCase:
    def execute(self, cmd: AssignAuditorCommand, uow: AbstractUnitOfWork) -> AuditAuditorDTO:
        with uow:
            _get_live_or_raise(uow.audits, cmd.audit_id, "Audit")
            auditor = _get_or_raise(uow.auditors, cmd.auditor_id, "Auditor")
            _ensure_unique(
                uow.audit_auditors, "Auditor is already assigned to this audit",
                audit_id=cmd.audit_id, auditor_id=cmd.auditor_id,
            )
            assignment = _business(_audit_svc.assign_auditor, cmd.audit_id, cmd.auditor_id, cmd.role)
            uow.audit_auditors.add(assignment)
            uow.commit()
            company = uow.audit_companies.get(auditor.audit_company_id) if auditor.audit_company_id else None
            return _Assembler.audit_auditor(assignment, auditor, company.company_name if company else None)


@dataclass
class UpdateAssignmentCommand:
    audit_id: int
    assignment_id: int
    role: str


class UpdateAuditorAssignmentUseCase:
    def execute(self, cmd: UpdateAssignmentCommand, uow: AbstractUnitOfWork) -> AuditAuditorDTO:
        with uow:
            assignment = uow.audit_auditors.get(cmd.assignment_id)
            if assignment is None or assignment.audit_id != cmd.audit_id:
                raise NotFoundError("Assignment not found")
            role = (cmd.role or "").strip()
            if len(role) < 2:
                raise ApplicationError("Role must be at least 2 characters.")
            assignment.role = role
            uow.commit()
            auditor = uow.auditors.get(assignment.auditor_id)
            company = (
                uow.audit_companies.get(auditor.audit_company_id)
                if auditor and auditor.audit_company_id else None
            )
            return _Assembler.audit_auditor(assignment, auditor, company.company_name if company else None)


class RemoveAuditorAssignmentUseCase:
    def execute(self, audit_id: int, assignment_id: int, uow: AbstractUnitOfWork) -> None:
        with uow:
            assignment = uow.audit_auditors.get(assignment_id)
            if assignment is None or assignment.audit_id != audit_id:
                raise NotFoundError("Assignment not found")
            uow.audit_auditors.delete(assignment)
            uow.commit()


# ===========================================================================
# USE CASES — FINDINGS
# ===========================================================================

@dataclass
class CreateFindingCommand:
    audit_id: int
    category: FindingCategory
    description: str
    target_date: Optional[date]
    acting_user_id: int
    root_cause: Optional[str] = None
    corrective_action: Optional[str] = None
    responsible_person: Optional[str] = None
    status: FindingStatus = FindingStatus.OPEN


class CreateFindingUseCase:
    def execute(self, cmd: CreateFindingCommand, uow: AbstractUnitOfWork) -> FindingDTO:
        with uow:
            audit = _get_live_or_raise(uow.audits, cmd.audit_id, "Audit")
            finding = _business(
                _finding_svc.create_finding,
                audit_id=audit.id,
                category=cmd.category,
                description=cmd.description,
                target_date=cmd.target_date,
                created_by=cmd.acting_user_id,
                today=_today(),
                root_cause=cmd.root_cause,
                corrective_action=cmd.corrective_action,
                responsible_person=cmd.responsible_person,
                status=cmd.status,
            )
            uow.findings.add(finding)
            uow.commit()
            return _Assembler.finding(finding, audit, _load_names(uow))


@dataclass
class UpdateFindingCommand:
    finding_id: int
    changes: Dict[str, Any]


class UpdateFindingUseCase:
    def execute(self, cmd: UpdateFindingCommand, uow: AbstractUnitOfWork) -> FindingDTO:
        with uow:
            finding = _get_live_or_raise(uow.findings, cmd.finding_id, "Finding")
            if cmd.changes.get("audit_id") is not None:
                _get_live_or_raise(uow.audits, cmd.changes["audit_id"], "Audit")
            _business(_finding_svc.update_finding, finding, cmd.changes, _today())
            uow.commit()
            return _Assembler.finding(finding, uow.audits.get(finding.audit_id), _load_names(uow))


class GetFindingUseCase:
    def execute(self, finding_id: int, uow: AbstractUnitOfWork) -> FindingDetailDTO:
        with uow:
            finding = _get_live_or_raise(uow.findings, finding_id, "Finding")
            _refresh_findings(uow, [finding], _today())
            rows = sorted(
                uow.attachments.find_all(finding_id=finding.id),
                key=lambda a: a.uploaded_at,
                reverse=True,
            )
            uploaders = _user_names(uow, (a.uploaded_by for a in rows))
            attachments = [_Assembler.attachment(a, a.finding_id, uploaders.get(a.uploaded_by)) for a in rows]
            uow.commit()
            return _Assembler.finding_detail(
                finding, uow.audits.get(finding.audit_id), _load_names(uow), attachments
            )


@dataclass
class ListFindingsQuery:
    filters: FindingFilters = field(default_factory=FindingFilters)
    page: Any = None
    limit: Any = None
    include_deleted: bool = False


class ListFindingsUseCase:
    def execute(self, query: ListFindingsQuery, uow: AbstractUnitOfWork) -> PagedDTO:
        params = pagination_params(query.page, query.limit)
        with uow:
            # Bring stored statuses up to date first so status filters are exact
            _finding_svc.sweep_overdue(uow.findings.find_all(deleted_at=None), _today())
            uow.flush()
            findings, total = uow.findings.search(
                query.filters,
                include_deleted=query.include_deleted,
                offset=params.offset,
                limit=params.limit,
            )
            names = _load_names(uow)
            audits = {a.id: a for a in uow.audits.list_all()}
            items = [_Assembler.finding(f, audits.get(f.audit_id), names) for f in findings]
            uow.commit()
            return _paged(items, total, params.page, params.limit)


class CloseFindingUseCase:
    def execute(self, finding_id: int, uow: AbstractUnitOfWork) -> FindingDTO:
        with uow:
            finding = _get_live_or_raise(uow.findings, finding_id, "Finding")
            _business(_finding_svc.close_finding, finding, _today())
            uow.commit()
            return _Assembler.finding(finding, uow.audits.get(finding.audit_id), _load_names(uow))


class ReopenFindingUseCase:
    def execute(self, finding_id: int, uow: AbstractUnitOfWork) -> FindingDTO:
        with uow:
            finding = _get_live_or_raise(uow.findings, finding_id, "Finding")
            _business(_finding_svc.reopen_finding, finding, _today())
            uow.commit()
            return _Assembler.finding(finding, uow.audits.get(finding.audit_id), _load_names(uow))


class DeleteFindingUseCase:
    def execute(self, cmd: SoftDeleteCommand, uow: AbstractUnitOfWork) -> None:
        with uow:
            finding = _get_or_raise(uow.findings, cmd.entity_id, "Finding")
            _business(_soft_delete_svc.soft_delete, finding, "Finding", cmd.acting_user_id)
            uow.commit()


class RestoreFindingUseCase:
    def execute(self, finding_id: int, uow: AbstractUnitOfWork) -> FindingDTO:
        with uow:
            finding = _get_or_raise(uow.findings, finding_id, "Finding")
            _business(_soft_delete_svc.restore, finding, "Finding")
            _finding_svc.refresh_overdue(finding, _today())
            uow.commit()
            return _Assembler.finding(finding, uow.audits.get(finding.audit_id), _load_names(uow))


class ListEvidenceUseCase:
    def execute(self, finding_id: int, uow: AbstractUnitOfWork) -> List[AttachmentDTO]:
        with uow:
            _get_live_or_raise(uow.findings, finding_id, "Finding")
            rows = sorted(
                uow.attachments.find_all(finding_id=finding_id),
                key=lambda a: a.uploaded_at,
                reverse=True,
            )
            uploaders = _user_names(uow, (a.uploaded_by for a in rows))
            return [_Assembler.attachment(a, a.finding_id, uploaders.get(a.uploaded_by)) for a in rows]


class AddEvidenceUseCase:
    def __init__(self, file_store: AbstractFileStore):
        self._store = file_store

    def execute(self, cmd: AddAttachmentsCommand, uow: AbstractUnitOfWork) -> UploadResultDTO:
        with uow:
            _get_live_or_raise(uow.findings, cmd.parent_id, "Finding")
            stored, failed = _store_files(self._store, "findings", cmd.files)
            rows = []
            for s in stored:
                row = Attachment(
                    finding_id=cmd.parent_id,
                    file_path=s.file_path,
                    file_name=s.file_name,
                    file_type=s.file_type,
                    file_size=s.file_size,
                    uploaded_by=cmd.acting_user_id,
                )
                uow.attachments.add(row)
                rows.append(row)
            uow.commit()
            uploader = _user_names(uow, [cmd.acting_user_id]).get(cmd.acting_user_id)
            return UploadResultDTO(
                uploaded=[_Assembler.attachment(r, r.finding_id, uploader) for r in rows],
                failed=failed,
            )


class DeleteEvidenceUseCase:
    def __init__(self, file_store: AbstractFileStore):
        self._store = file_store

    def execute(self, cmd: DeleteAttachmentCommand, uow: AbstractUnitOfWork) -> None:
        with uow:
            row = uow.attachments.get(cmd.attachment_id)
            if row is None or row.finding_id != cmd.parent_id:
                raise NotFoundError("Evidence not found")
            uow.attachments.delete(row)
            uow.commit()
        self._store.delete(row.file_path)


class SweepOverdueFindingsUseCase:
    """Bulk Overdue transition; returns how many findings changed."""

    def execute(self, uow: AbstractUnitOfWork, today: Optional[date] = None) -> int:
        with uow:
            changed = _finding_svc.sweep_overdue(
                uow.findings.find_all(deleted_at=None), today or _today()
            )
            uow.commit()
            if changed:
                logger.info("Marked %d finding(s) as overdue", len(changed))
            return len(changed)


# ===========================================================================
# USE CASES — SETTINGS
# ===========================================================================

class GetSettingsUseCase:
    def execute(self, uow: AbstractUnitOfWork) -> SettingsDTO:
        with uow:
            settings = next(iter(sorted(uow.settings.list_all(), key=lambda s: s.id)), None)
            return _Assembler.settings(settings or CompanySettings())


class UpdateSettingsUseCase:
    """Upsert the single settings row."""

    def execute(self, changes: Dict[str, Any], uow: AbstractUnitOfWork) -> SettingsDTO:
        with uow:
            settings = next(iter(sorted(uow.settings.list_all(), key=lambda s: s.id)), None)
            if settings is None:
                settings = CompanySettings()
                _business(_settings_svc.update_settings, settings, changes)
                uow.settings.add(settings)
            else:
                _business(_settings_svc.update_settings, settings, changes)
            uow.commit()
            return _Assembler.settings(settings)


# ===========================================================================
# USE CASES — DASHBOARD
# ===========================================================================

def _dashboard_scope(
    uow: AbstractUnitOfWork, filters: AuditFilters
) -> Tuple[List[Audit], List[Finding]]:
    audits, _ = uow.audits.search(filters)
    findings = [
        f for f in uow.findings.list_for_audits([a.id for a in audits]) if f.deleted_at is None
    ]
    return audits, findings


class GetDashboardStatsUseCase:
    def execute(self, filters: AuditFilters, uow: AbstractUnitOfWork) -> Dict[str, Dict[str, int]]:
        today = _today()
        with uow:
            audits, findings = _dashboard_scope(uow, filters)
            return {
                "audits": _dashboard_svc.audit_stats(audits, today),
                "findings": _dashboard_svc.finding_stats(findings, today),
            }


class GetChartDataUseCase:
    def execute(self, filters: AuditFilters, uow: AbstractUnitOfWork) -> Dict[str, List[Dict[str, Any]]]:
        with uow:
            audits, findings = _dashboard_scope(uow, filters)
            names = _load_names(uow)
            return _dashboard_svc.chart_data(audits, findings, names.audit_parties, _today())


class GetFindingsTrendUseCase:
    def execute(self, filters: AuditFilters, uow: AbstractUnitOfWork) -> Dict[str, List[Dict[str, Any]]]:
        with uow:
            audits, findings = _dashboard_scope(uow, filters)
            names = _load_names(uow)
            return _dashboard_svc.findings_trend(
                audits, findings, names.vessels, names.audit_types, _today()
            )


# ===========================================================================
# USE CASES — REMINDERS
# ===========================================================================

@dataclass
class SendRemindersCommand:
    admin_email: str
    today: Optional[date] = None


class SendRemindersUseCase:
    """
    The daily reminder batch.  Each step runs in its own unit of work and
    its own error boundary, so one failing step is logged and the rest
    still run.  A NotificationLog marker per (entity, type) prevents a
    second e-mail for the same thing on the same day.
    """

    def __init__(self, notifier: AbstractNotifier):
        self._notifier = notifier

    def execute(self, cmd: SendRemindersCommand, uow: AbstractUnitOfWork) -> ReminderRunDTO:
        today = cmd.today or _today()
        run = ReminderRunDTO()

        try:
            run.overdue_marked = SweepOverdueFindingsUseCase().execute(uow, today)
        except Exception:
            logger.exception("Overdue sweep failed")

        steps = (
            ("upcoming audits", self._upcoming_audits, "upcoming_audits"),
            ("finding due reminders", self._findings_due_soon, "findings_due_soon"),
            ("overdue finding alerts", self._overdue_findings, "overdue_findings"),
        )
        for label, step, counter in steps:
            try:
                with uow:
                    sent = step(uow, cmd, today, run)
                    uow.commit()
                setattr(run, counter, sent)
                logger.info("Reminder step '%s': %d sent", label, sent)
            except Exception:
                logger.exception("Reminder step '%s' failed", label)
        return run

    # -- helpers --------------------------------------------------------------

    def _deliver(
        self,
        uow: AbstractUnitOfWork,
        run: ReminderRunDTO,
        entity_type: str,
        entity_id: int,
        notification_type: NotificationType,
        recipient: str,
        send,
        today: date,
    ) -> bool:
        marker = uow.notification_logs.find_one(
            entity_type=entity_type, entity_id=entity_id, notification_type=notification_type
        )
        if _reminder_svc.already_notified(marker, today):
            run.skipped += 1
            return False
        try:
            send()
        except Exception:
            logger.exception("Failed to send %s for %s %s", notification_type.value, entity_type, entity_id)
            run.failed += 1
            return False
        if marker is None:
            marker = NotificationLog(
                entity_type=entity_type, entity_id=entity_id, notification_type=notification_type
            )
            uow.notification_logs.add(marker)
        _reminder_svc.stamp(marker, recipient)
        return True

    def _finding_details(self, uow: AbstractUnitOfWork, f: Finding) -> Dict[str, Any]:
        audit = uow.audits.get(f.audit_id)
        return {
            "finding_id": f.id,
            "audit_reference": audit.audit_reference if audit else "",
            "category": f.category.value,
            "description": truncate(f.description, 100),
            "target_date": _fmt_date(f.target_date),
            "responsible_person": f.responsible_person or "Not assigned",
        }

    def _upcoming_audits(self, uow, cmd, today, run) -> int:
        names = _load_names(uow)
        sent = 0
        for audit in _reminder_svc.upcoming_audits(uow.audits.find_all(deleted_at=None), today):
            details = {
                "audit_reference": audit.audit_reference,
                "vessel_name": names.vessels.get(audit.vessel_id, ""),
                "audit_type": names.audit_types.get(audit.audit_type_id, ""),
                "next_due_date": _fmt_date(audit.next_due_date),
                "days_remaining": days_between(today, audit.next_due_date),
            }
            if self._deliver(
                uow, run, "audit", audit.id, NotificationType.UPCOMING_AUDIT, cmd.admin_email,
                lambda: self._notifier.upcoming_audit(cmd.admin_email, details), today,
            ):
                sent += 1
        return sent

    def _findings_due_soon(self, uow, cmd, today, run) -> int:
        roles = {r.id: r.role_name for r in uow.roles.list_all()}
        notify_roles = {UserRole.ENCODER.value, UserRole.ADMIN.value}
        sent = 0
        for f in _reminder_svc.findings_due_soon(uow.findings.find_all(deleted_at=None), today):
            audit = uow.audits.get(f.audit_id)
            creator = uow.users.get(audit.created_by) if audit and audit.created_by else None
            if creator is None or creator.deleted_at is not None or roles.get(creator.role_id) not in notify_roles:
                continue
            details = dict(self._finding_details(uow, f), days_remaining=days_between(today, f.target_date))
            if self._deliver(
                uow, run, "finding", f.id, NotificationType.FINDING_DUE_SOON, creator.email,
                lambda: self._notifier.finding_due(creator.email, details), today,
            ):
                sent += 1
        return sent

    def _overdue_findings(self, uow, cmd, today, run) -> int:
        sent = 0
        for f in _reminder_svc.overdue_findings(uow.findings.find_all(deleted_at=None), today):
            details = dict(self._finding_details(uow, f), days_overdue=days_between(f.target_date, today))
            if self._deliver(
                uow, run, "finding", f.id, NotificationType.FINDING_OVERDUE, cmd.admin_email,
                lambda: self._notifier.finding_overdue(cmd.admin_email, details), today,
            ):
                sent += 1
        return sent
