"""
infrastructure.py

SQLAlchemy implementation of all repository interfaces and the Unit of Work.

Tables are declared with SQLAlchemy Core and mapped imperatively onto the
plain dataclasses of model.py, so the domain layer never imports SQLAlchemy.
Any URL SQLAlchemy understands works; SQLite is the development default and
MySQL (via PyMySQL) the production target:

    db = Database("sqlite:///audit_monitoring.db")
    db.create_all()
    with db.unit_of_work() as uow:
        ...

Nothing in service.py, application.py, or api.py depends on this module
except through the Abstract* interfaces and the Database handle that api.py
creates at startup.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Tuple

from sqlalchemy import (
    Boolean,
    Column,
    Date,
    DateTime,
    Enum as SAEnum,
    ForeignKey,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    UniqueConstraint,
    create_engine,
    delete,
    event,
    func,
    select,
)
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, registry, sessionmaker
from sqlalchemy.pool import StaticPool
from sqlalchemy.types import TypeDecorator

from application import (
    AbstractAuditRepository,
    AbstractFindingRepository,
    AbstractRepository,
    AbstractRolePermissionRepository,
    AbstractUnitOfWork,
    AuditFilters,
    ConflictError,
    FindingFilters,
)
from model import (
    Action,
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
    Resource,
    Role,
    RolePermission,
    User,
    UserRole,
    Vessel,
    VesselStatus,
)
from security import hash_password
from service import AccessControlService

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Column types
# ---------------------------------------------------------------------------

class UTCDateTime(TypeDecorator):
    """Stores UTC; always hands back timezone-aware datetimes."""
    impl = DateTime
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is not None and value.tzinfo is not None:
            value = value.astimezone(timezone.utc).replace(tzinfo=None)
        return value

    def process_result_value(self, value, dialect):
        if value is not None and value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value


def _enum(enum_cls) -> SAEnum:
    # Persist the human-readable values ("In Progress"), not the member names
    return SAEnum(
        enum_cls,
        values_callable=lambda e: [m.value for m in e],
        native_enum=False,
        length=32,
    )


def _timestamps() -> List[Column]:
    return [
        Column("created_at", UTCDateTime, nullable=False),
        Column("updated_at", UTCDateTime, nullable=False),
    ]


def _soft_delete() -> List[Column]:
    return [
        Column("deleted_at", UTCDateTime, nullable=True, index=True),
        Column("deleted_by", Integer, ForeignKey("users.id"), nullable=True),
    ]


# ---------------------------------------------------------------------------
# Tables
# ---------------------------------------------------------------------------

metadata = MetaData()

roles = Table(
    "roles", metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("role_name", String(50), nullable=False, unique=True),
    Column("description", Text),
    Column("is_active", Boolean, nullable=False, default=True),
    *_timestamps(),
)

users = Table(
    "users", metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("name", String(100), nullable=False),
    Column("email", String(255), nullable=False, unique=True),
    Column("password_hash", String(255), nullable=False),
    Column("role_id", Integer, ForeignKey("roles.id"), nullable=False, index=True),
    Column("is_active", Boolean, nullable=False, default=True),
    Column("last_login_at", UTCDateTime),
    *_timestamps(),
    *_soft_delete(),
)

pages = Table(
    "pages", metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("page_name", String(100), nullable=False),
    Column("page_path", String(255), nullable=False, unique=True),
    Column("description", Text),
    Column("icon", String(50)),
    Column("is_active", Boolean, nullable=False, default=True),
    Column("display_order", Integer, nullable=False, default=0),
    *_timestamps(),
)

permissions = Table(
    "permissions", metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("permission_name", String(50), nullable=False, unique=True),
    Column("description", Text),
    Column("created_at", UTCDateTime, nullable=False),
)

role_permissions = Table(
    "role_permissions", metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("role_id", Integer, ForeignKey("roles.id"), nullable=False, index=True),
    Column("page_id", Integer, ForeignKey("pages.id"), nullable=False),
    Column("permission_id", Integer, ForeignKey("permissions.id"), nullable=False),
    UniqueConstraint("role_id", "page_id", "permission_id", name="uq_role_page_permission"),
)

vessels = Table(
    "vessels", metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("vessel_name", String(255), nullable=False),
    Column("vessel_code", String(50), nullable=False, unique=True),
    Column("registration_number", String(100)),
    Column("status", _enum(VesselStatus), nullable=False),
    *_timestamps(),
)

audit_types = Table(
    "audit_types", metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("type_name", String(100), nullable=False, unique=True),
    Column("description", Text),
    Column("is_active", Boolean, nullable=False, default=True),
    *_timestamps(),
)

audit_parties = Table(
    "audit_parties", metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("party_name", String(100), nullable=False, unique=True),
    Column("description", Text),
    Column("is_active", Boolean, nullable=False, default=True),
    *_timestamps(),
    *_soft_delete(),
)

audit_companies = Table(
    "audit_companies", metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("company_name", String(255), nullable=False),
    Column("contact_person", String(255)),
    Column("email", String(255)),
    Column("phone", String(50)),
    Column("address", Text),
    Column("is_active", Boolean, nullable=False, default=True),
    *_timestamps(),
)

auditors = Table(
    "auditors", metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("audit_company_id", Integer, ForeignKey("audit_companies.id"), index=True),
    Column("auditor_name", String(255), nullable=False),
    Column("certification", String(255)),
    Column("email", String(255)),
    Column("phone", String(50)),
    Column("specialization", String(255)),
    Column("is_active", Boolean, nullable=False, default=True),
    *_timestamps(),
)

audit_results = Table(
    "audit_results", metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("result_name", String(100), nullable=False, unique=True),
    Column("description", Text),
    Column("is_active", Boolean, nullable=False, default=True),
    *_timestamps(),
)

audits = Table(
    "audits", metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("audit_reference", String(50), unique=True),
    Column("vessel_id", Integer, ForeignKey("vessels.id"), nullable=False, index=True),
    Column("audit_type_id", Integer, ForeignKey("audit_types.id"), nullable=False, index=True),
    Column("audit_party_id", Integer, ForeignKey("audit_parties.id"), nullable=False, index=True),
    Column("audit_company_id", Integer, ForeignKey("audit_companies.id"), index=True),
    Column("audit_start_date", Date, nullable=False, index=True),
    Column("audit_end_date", Date),
    Column("next_due_date", Date, index=True),
    Column("location", String(255)),
    Column("status", _enum(AuditStatus), nullable=False, index=True),
    Column("audit_result_id", Integer, ForeignKey("audit_results.id")),
    Column("report_file_path", String(500)),
    Column("remarks", Text),
    Column("created_by", Integer, ForeignKey("users.id")),
    *_timestamps(),
    *_soft_delete(),
)

audit_auditors = Table(
    "audit_auditors", metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("audit_id", Integer, ForeignKey("audits.id"), nullable=False, index=True),
    Column("auditor_id", Integer, ForeignKey("auditors.id"), nullable=False, index=True),
    Column("role", String(100), nullable=False),
    Column("assigned_at", UTCDateTime, nullable=False),
    UniqueConstraint("audit_id", "auditor_id", name="uq_audit_auditor"),
)

audit_attachments = Table(
    "audit_attachments", metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("audit_id", Integer, ForeignKey("audits.id"), nullable=False, index=True),
    Column("file_path", String(500), nullable=False),
    Column("file_name", String(255), nullable=False),
    Column("file_type", String(100)),
    Column("file_size", Integer),
    Column("uploaded_by", Integer, ForeignKey("users.id")),
    Column("uploaded_at", UTCDateTime, nullable=False),
)

findings = Table(
    "findings", metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("audit_id", Integer, ForeignKey("audits.id"), nullable=False, index=True),
    Column("category", _enum(FindingCategory), nullable=False, index=True),
    Column("description", Text, nullable=False),
    Column("root_cause", Text),
    Column("corrective_action", Text),
    Column("responsible_person", String(255)),
    Column("target_date", Date, index=True),
    Column("status", _enum(FindingStatus), nullable=False, index=True),
    Column("closure_date", Date),
    Column("created_by", Integer, ForeignKey("users.id")),
    *_timestamps(),
    *_soft_delete(),
)

attachments = Table(
    "attachments", metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("finding_id", Integer, ForeignKey("findings.id"), nullable=False, index=True),
    Column("file_path", String(500), nullable=False),
    Column("file_name", String(255), nullable=False),
    Column("file_type", String(100)),
    Column("file_size", Integer),
    Column("uploaded_by", Integer, ForeignKey("users.id")),
    Column("uploaded_at", UTCDateTime, nullable=False),
)

company_settings = Table(
    "company_settings", metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("company_name", String(255), nullable=False),
    Column("company_address", Text),
    Column("company_phone", String(50)),
    Column("company_email", String(255)),
    Column("contact_person", String(255)),
    Column("registration_number", String(100)),
    Column("tax_id", String(100)),
    Column("website", String(255)),
    Column("logo_path", String(500)),
    Column("updated_at", UTCDateTime, nullable=False),
)

notification_logs = Table(
    "notification_logs", metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("entity_type", String(20), nullable=False),
    Column("entity_id", Integer, nullable=False),
    Column("notification_type", _enum(NotificationType), nullable=False),
    Column("recipient", String(255), nullable=False),
    Column("last_notified_at", UTCDateTime, nullable=False),
    UniqueConstraint("entity_type", "entity_id", "notification_type", name="uq_notification_marker"),
)


# ---------------------------------------------------------------------------
# Mapping
# ---------------------------------------------------------------------------

mapper_registry = registry()

_TABLES: Dict[type, Table] = {
    Role: roles,
    User: users,
    Page: pages,
    Permission: permissions,
    RolePermission: role_permissions,
    Vessel: vessels,
    AuditType: audit_types,
    AuditParty: audit_parties,
    AuditCompany: audit_companies,
    Auditor: auditors,
    AuditResult: audit_results,
    Audit: audits,
    AuditAuditor: audit_auditors,
    AuditAttachment: audit_attachments,
    Finding: findings,
    Attachment: attachments,
    CompanySettings: company_settings,
    NotificationLog: notification_logs,
}

_mappers_started = False


def start_mappers() -> None:
    """Map every domain dataclass onto its table.  Safe to call repeatedly."""
    global _mappers_started
    if _mappers_started:
        return
    for cls, table in _TABLES.items():
        mapper_registry.map_imperatively(cls, table)
    _mappers_started = True


@event.listens_for(Engine, "connect")
def _sqlite_foreign_keys(dbapi_connection, connection_record):
    # SQLite ignores REFERENCES clauses unless asked per connection
    if type(dbapi_connection).__module__.startswith("sqlite3"):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


# ---------------------------------------------------------------------------
# Repository implementations
# ---------------------------------------------------------------------------

class SqlAlchemyRepository(AbstractRepository):
    """Generic repository over one mapped class."""

    model: type = None

    def __init__(self, session: Session):
        self.session = session
        self.table: Table = _TABLES[self.model]

    def _where(self, criteria: Dict[str, Any]) -> list:
        return [self.table.c[name] == value for name, value in criteria.items()]

    def _flush(self) -> None:
        try:
            self.session.flush()
        except IntegrityError as exc:
            self.session.rollback()
            logger.warning("Integrity error on %s: %s", self.table.name, exc.orig)
            raise ConflictError("A conflicting record already exists") from exc

    def get(self, entity_id):
        return self.session.get(self.model, entity_id)

    def add(self, entity) -> None:
        self.session.add(entity)
        self._flush()

    def delete(self, entity) -> None:
        self.session.delete(entity)
        self._flush()

    def list_all(self) -> list:
        return list(self.session.scalars(select(self.model).order_by(self.table.c.id)))

    def find_one(self, **criteria):
        stmt = select(self.model).where(*self._where(criteria)).order_by(self.table.c.id).limit(1)
        return self.session.scalars(stmt).first()

    def find_all(self, **criteria) -> list:
        stmt = select(self.model).where(*self._where(criteria)).order_by(self.table.c.id)
        return list(self.session.scalars(stmt))

    def count_where(self, **criteria) -> int:
        stmt = select(func.count(self.table.c.id)).where(*self._where(criteria))
        return self.session.scalar(stmt) or 0


class SqlAlchemyVesselRepository(SqlAlchemyRepository):          model = Vessel
class SqlAlchemyAuditTypeRepository(SqlAlchemyRepository):       model = AuditType
class SqlAlchemyAuditPartyRepository(SqlAlchemyRepository):      model = AuditParty
class SqlAlchemyAuditCompanyRepository(SqlAlchemyRepository):    model = AuditCompany
class SqlAlchemyAuditorRepository(SqlAlchemyRepository):         model = Auditor
class SqlAlchemyAuditResultRepository(SqlAlchemyRepository):     model = AuditResult
class SqlAlchemyAuditAuditorRepository(SqlAlchemyRepository):    model = AuditAuditor
class SqlAlchemyAuditAttachmentRepository(SqlAlchemyRepository): model = AuditAttachment
class SqlAlchemyAttachmentRepository(SqlAlchemyRepository):      model = Attachment
class SqlAlchemyUserRepository(SqlAlchemyRepository):            model = User
class SqlAlchemyRoleRepository(SqlAlchemyRepository):            model = Role
class SqlAlchemyPageRepository(SqlAlchemyRepository):            model = Page
class SqlAlchemyPermissionRepository(SqlAlchemyRepository):      model = Permission
class SqlAlchemySettingsRepository(SqlAlchemyRepository):        model = CompanySettings
class SqlAlchemyNotificationLogRepository(SqlAlchemyRepository): model = NotificationLog


def _page(stmt, offset: Optional[int], limit: Optional[int]):
    if offset is not None:
        stmt = stmt.offset(offset)
    if limit is not None:
        stmt = stmt.limit(limit)
    return stmt


class SqlAlchemyAuditRepository(SqlAlchemyRepository, AbstractAuditRepository):
    model = Audit

    def search(
        self,
        filters: AuditFilters,
        include_deleted: bool = False,
        offset: Optional[int] = None,
        limit: Optional[int] = None,
    ) -> Tuple[List[Audit], int]:
        t = self.table
        conditions = []
        if not include_deleted:
            conditions.append(t.c.deleted_at.is_(None))
        if filters.vessel_id is not None:
            conditions.append(t.c.vessel_id == filters.vessel_id)
        if filters.audit_type_id is not None:
            conditions.append(t.c.audit_type_id == filters.audit_type_id)
        if filters.audit_party_id is not None:
            conditions.append(t.c.audit_party_id == filters.audit_party_id)
        if filters.status is not None:
            conditions.append(t.c.status == filters.status)
        if filters.date_from is not None:
            conditions.append(t.c.audit_start_date >= filters.date_from)
        if filters.date_to is not None:
            conditions.append(t.c.audit_start_date <= filters.date_to)

        total = self.session.scalar(select(func.count(t.c.id)).where(*conditions)) or 0
        stmt = select(Audit).where(*conditions).order_by(t.c.audit_start_date.desc(), t.c.id.desc())
        return list(self.session.scalars(_page(stmt, offset, limit))), total


class SqlAlchemyFindingRepository(SqlAlchemyRepository, AbstractFindingRepository):
    model = Finding

    def search(
        self,
        filters: FindingFilters,
        include_deleted: bool = False,
        offset: Optional[int] = None,
        limit: Optional[int] = None,
    ) -> Tuple[List[Finding], int]:
        t = self.table
        conditions = []
        if not include_deleted:
            conditions.append(t.c.deleted_at.is_(None))
        if filters.audit_id is not None:
            conditions.append(t.c.audit_id == filters.audit_id)
        if filters.category is not None:
            conditions.append(t.c.category == filters.category)
        if filters.status is not None:
            conditions.append(t.c.status == filters.status)

        total = self.session.scalar(select(func.count(t.c.id)).where(*conditions)) or 0
        stmt = select(Finding).where(*conditions).order_by(t.c.created_at.desc(), t.c.id.desc())
        return list(self.session.scalars(_page(stmt, offset, limit))), total

    def list_for_audits(self, audit_ids: Iterable[int]) -> List[Finding]:
        ids = list(audit_ids)
        if not ids:
            return []
        stmt = select(Finding).where(self.table.c.audit_id.in_(ids)).order_by(self.table.c.id)
        return list(self.session.scalars(stmt))

    def count_by_audit(self, audit_ids: Iterable[int]) -> Dict[int, int]:
        ids = list(audit_ids)
        if not ids:
            return {}
        t = self.table
        stmt = (
            select(t.c.audit_id, func.count(t.c.id))
            .where(t.c.audit_id.in_(ids), t.c.deleted_at.is_(None))
            .group_by(t.c.audit_id)
        )
        return {audit_id: count for audit_id, count in self.session.execute(stmt)}


class SqlAlchemyRolePermissionRepository(SqlAlchemyRepository, AbstractRolePermissionRepository):
    model = RolePermission

    def delete_for_role(self, role_id: int) -> None:
        self.session.execute(delete(self.table).where(self.table.c.role_id == role_id))


# ---------------------------------------------------------------------------
# Unit of Work
# ---------------------------------------------------------------------------

class SqlAlchemyUnitOfWork(AbstractUnitOfWork):
    """
    Opens a fresh session on every `with` block and closes it on exit.
    Sequential re-entry is fine (FastAPI hands the same instance to every
    dependency of one request); nesting is not.
    """

    def __init__(self, session_factory: sessionmaker):
        self.session_factory = session_factory
        self.session: Optional[Session] = None

    def __enter__(self) -> "SqlAlchemyUnitOfWork":
        self.session = self.session_factory()
        s = self.session
        self.vessels = SqlAlchemyVesselRepository(s)
        self.audit_types = SqlAlchemyAuditTypeRepository(s)
        self.audit_parties = SqlAlchemyAuditPartyRepository(s)
        self.audit_companies = SqlAlchemyAuditCompanyRepository(s)
        self.auditors = SqlAlchemyAuditorRepository(s)
        self.audit_results = SqlAlchemyAuditResultRepository(s)
        self.audits = SqlAlchemyAuditRepository(s)
        self.audit_auditors = SqlAlchemyAuditAuditorRepository(s)
        self.audit_attachments = SqlAlchemyAuditAttachmentRepository(s)
        self.findings = SqlAlchemyFindingRepository(s)
        self.attachments = SqlAlchemyAttachmentRepository(s)
        self.users = SqlAlchemyUserRepository(s)
        self.roles = SqlAlchemyRoleRepository(s)
        self.pages = SqlAlchemyPageRepository(s)
        self.permissions = SqlAlchemyPermissionRepository(s)
        self.role_permissions = SqlAlchemyRolePermissionRepository(s)
        self.settings = SqlAlchemySettingsRepository(s)
        self.notification_logs = SqlAlchemyNotificationLogRepository(s)
        return super().__enter__()

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        try:
            super().__exit__(exc_type, exc_val, exc_tb)
        finally:
            self.session.close()

    def commit(self) -> None:
        try:
            self.session.commit()
        except IntegrityError as exc:
            self.session.rollback()
            logger.warning("Commit rejected by a database constraint: %s", exc.orig)
            raise ConflictError("A conflicting record already exists") from exc

    def rollback(self) -> None:
        self.session.rollback()

    def flush(self) -> None:
        self.session.flush()


# ---------------------------------------------------------------------------
# Engine lifecycle
# ---------------------------------------------------------------------------

class Database:
    """
    Owns the engine and session factory.  Created once at startup and
    disposed at shutdown; nothing else holds a connection pool.
    """

    def __init__(self, url: str, echo: bool = False):
        start_mappers()
        options: Dict[str, Any] = {"echo": echo, "future": True}
        if url.startswith("sqlite"):
            options["connect_args"] = {"check_same_thread": False}
            if ":memory:" in url or url in ("sqlite://", "sqlite:///"):
                # a single shared connection, otherwise every session sees an empty DB
                options["poolclass"] = StaticPool
        else:
            options["pool_pre_ping"] = True
        self.url = url
        self.engine = create_engine(url, **options)
        self.session_factory = sessionmaker(bind=self.engine, autoflush=False, expire_on_commit=False)

    def create_all(self) -> None:
        metadata.create_all(self.engine)

    def unit_of_work(self) -> SqlAlchemyUnitOfWork:
        return SqlAlchemyUnitOfWork(self.session_factory)

    def dispose(self) -> None:
        self.engine.dispose()
        logger.info("Database engine disposed")


# ---------------------------------------------------------------------------
# First-run seeding
# ---------------------------------------------------------------------------

_ROLE_DESCRIPTIONS = {
    UserRole.ADMIN: "Full access to every page and operation",
    UserRole.ENCODER: "Records audits and findings and maintains reference data",
    UserRole.AUDITOR: "Read access plus evidence uploads",
    UserRole.VIEWER: "Read-only access",
}

_PERMISSION_DESCRIPTIONS = {
    Action.VIEW: "View records",
    Action.CREATE: "Create records",
    Action.UPDATE: "Edit records",
    Action.DELETE: "Delete or restore records",
    Action.CLOSE: "Close findings",
    Action.REOPEN: "Reopen closed findings",
    Action.UPLOAD: "Upload files",
}


def seed_defaults(
    uow: AbstractUnitOfWork,
    admin_email: str,
    admin_password: str,
    admin_name: str = "System Administrator",
) -> None:
    """
    Insert the built-in permissions, pages and roles that are missing.  The
    default matrix is written only for roles created here, so edits made by
    an administrator survive a restart.  An admin account is created when
    the user table is empty.
    """
    access = AccessControlService()
    with uow:
        perm_ids: Dict[Action, int] = {}
        for action in Action:
            perm = uow.permissions.find_one(permission_name=action.value)
            if perm is None:
                perm = Permission(permission_name=action.value, description=_PERMISSION_DESCRIPTIONS[action])
                uow.permissions.add(perm)
            perm_ids[action] = perm.id

        page_ids: Dict[Resource, int] = {}
        for order, resource in enumerate(Resource, start=1):
            page = uow.pages.find_one(page_path=resource.value)
            if page is None:
                page = Page(
                    page_name=access.PAGE_TITLES[resource],
                    page_path=resource.value,
                    display_order=order,
                )
                uow.pages.add(page)
            page_ids[resource] = page.id

        matrix = access.default_matrix()
        role_ids: Dict[UserRole, int] = {}
        for role_enum in UserRole:
            role = uow.roles.find_one(role_name=role_enum.value)
            if role is None:
                role = Role(role_name=role_enum.value, description=_ROLE_DESCRIPTIONS[role_enum])
                uow.roles.add(role)
                for resource, action in sorted(matrix[role_enum]):
                    uow.role_permissions.add(
                        RolePermission(
                            role_id=role.id,
                            page_id=page_ids[resource],
                            permission_id=perm_ids[action],
                        )
                    )
                logger.info("Seeded role %s with %d grants", role.role_name, len(matrix[role_enum]))
            role_ids[role_enum] = role.id

        if uow.users.count_where() == 0:
            now = datetime.now(timezone.utc)
            uow.users.add(
                User(
                    name=admin_name,
                    email=admin_email.strip().lower(),
                    password_hash=hash_password(admin_password),
                    role_id=role_ids[UserRole.ADMIN],
                    created_at=now,
                    updated_at=now,
                )
            )
            logger.warning("Created initial administrator %s; change the password", admin_email)

        uow.commit()
