"""
api.py

REST API layer for the Vessel Audit Monitor.

Framework : FastAPI
Auth      : Bearer JWT issued by POST /api/auth/login.  The token is resolved
            to an AuthenticatedUser by the get_current_user dependency, which
            reloads the user's grants from the Role → Page → Permission matrix
            on every request.  Route guards are built with
            require(action, resource), a thin wrapper over service.can().

Structure
---------
  Routers (all prefixed under /api)
  ├── /auth                         — login, current user
  ├── /users                        — user admin, roles dropdown, password change
  ├── /roles                        — roles and their permission sets
  ├── /pages, /permissions          — matrix axes
  ├── /vessels                      — fleet register
  ├── /audit-types, /audit-parties, /audit-companies,
  │   /auditors, /audit-results     — reference data
  ├── /audits                       — audits, report, attachments, auditors
  ├── /findings                     — findings, close/reopen, evidence
  ├── /settings                     — company profile
  └── /dashboard                    — stats, charts, findings trend
  /uploads/{path}                   — stored files
  /health                           — liveness probe (no auth)

Error handling
--------------
  ValidationError / ApplicationError / ValueError → 400
  AuthenticationError → 401
  AuthorizationError  → 403
  NotFoundError       → 404
  ConflictError       → 409
  Unhandled           → 500 (logged, generic message)

Response envelope
-----------------
  Success  : { "success": true, "data": <payload>, "pagination"?: {...}, "message"?: "..." }
  Error    : { "success": false, "error": "<message>", "details"?: [...] }
"""

from __future__ import annotations

import dataclasses
import logging
from contextlib import asynccontextmanager
from datetime import date
from pathlib import Path as FsPath
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, FastAPI, File, Path, Query, Request, UploadFile, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse, JSONResponse
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from fastapi_mcp import FastApiMCP
from pydantic import BaseModel, EmailStr, Field, field_validator
from starlette.exceptions import HTTPException as StarletteHTTPException

from application import (
    # Exceptions
    ApplicationError,
    AuthenticationError,
    AuthorizationError,
    ConflictError,
    NotFoundError,
    # Ports & listing types
    AbstractUnitOfWork,
    AuditFilters,
    FindingFilters,
    IncomingFile,
    PagedDTO,
    # Commands
    AddAttachmentsCommand,
    AssignAuditorCommand,
    AssignRolePermissionsCommand,
    ChangePasswordCommand,
    CreateAuditCommand,
    CreateFindingCommand,
    CreateUserCommand,
    CreateVesselCommand,
    DeleteAttachmentCommand,
    ListAuditsQuery,
    ListFindingsQuery,
    LoginCommand,
    SoftDeleteCommand,
    UpdateAuditCommand,
    UpdateFindingCommand,
    UpdateLookupCommand,
    # Use-case classes used by more than one route
    LoginUseCase,
    ResolvePrincipalUseCase,
)
from config import Config
from infrastructure import Database, seed_defaults
from model import Action, AuditStatus, FindingCategory, FindingStatus, Resource, VesselStatus
from security import TokenError, create_token, decode_token
from service import AuthenticatedUser, can
from storage import LocalFileStore

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# App bootstrap
# ---------------------------------------------------------------------------

def open_database(app: FastAPI) -> None:
    """
    Build the configuration and the database handle, create the schema and
    seed the access-control defaults (plus an admin account on a fresh DB).
    """
    config = Config()
    database = Database(config.DATABASE_URL, echo=config.SQL_ECHO)
    database.create_all()
    seed_defaults(
        database.unit_of_work(),
        admin_email=config.ADMIN_EMAIL,
        admin_password=config.ADMIN_PASSWORD,
        admin_name=config.ADMIN_NAME,
    )
    FsPath(config.UPLOAD_DIR).mkdir(parents=True, exist_ok=True)

    app.state.config = config
    app.state.database = database
    app.state.file_store = LocalFileStore(config.UPLOAD_DIR, config.MAX_FILE_SIZE)
    logger.info("Database ready at %s", database.engine.url.render_as_string(hide_password=True))


def close_database(app: FastAPI) -> None:
    database: Optional[Database] = getattr(app.state, "database", None)
    if database is not None:
        database.dispose()


@asynccontextmanager
async def lifespan(app: FastAPI):
    open_database(app)
    try:
        yield
    finally:
        close_database(app)


app = FastAPI(
    title="Vessel Audit Monitor API",
    version="1.0.0",
    description=(
        "REST API for tracking vessel audits and their findings: reference data, "
        "audit records, corrective-action findings with due dates, evidence "
        "uploads, role-based access control and dashboard statistics."
    ),
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ---------------------------------------------------------------------------
# Global exception handlers
# ---------------------------------------------------------------------------

def _error(status_code: int, message: str, details: Any = None) -> JSONResponse:
    content: Dict[str, Any] = {"success": False, "error": message}
    if details is not None:
        content["details"] = details
    return JSONResponse(status_code=status_code, content=content)


@app.exception_handler(NotFoundError)
async def not_found_handler(request, exc: NotFoundError):
    return _error(404, str(exc))


@app.exception_handler(ConflictError)
async def conflict_handler(request, exc: ConflictError):
    return _error(409, str(exc))


@app.exception_handler(AuthenticationError)
async def authentication_handler(request, exc: AuthenticationError):
    return _error(401, str(exc))


@app.exception_handler(AuthorizationError)
async def authorization_handler(request, exc: AuthorizationError):
    return _error(403, str(exc))


@app.exception_handler(ApplicationError)
async def application_error_handler(request, exc: ApplicationError):
    return _error(400, str(exc))


@app.exception_handler(ValueError)
async def value_error_handler(request, exc: ValueError):
    return _error(400, str(exc))


@app.exception_handler(RequestValidationError)
async def validation_handler(request, exc: RequestValidationError):
    details = [
        {
            "field": ".".join(str(part) for part in err.get("loc", ())[1:]) or None,
            "message": err.get("msg", "Invalid value"),
        }
        for err in exc.errors()
    ]
    return _error(400, "Validation failed", details)


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request, exc: StarletteHTTPException):
    return _error(exc.status_code, str(exc.detail))


@app.exception_handler(Exception)
async def unhandled_handler(request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return _error(500, "Internal server error")


# ---------------------------------------------------------------------------
# Dependencies
# ---------------------------------------------------------------------------

def get_uow(request: Request) -> AbstractUnitOfWork:
    """A fresh SQLAlchemy Unit of Work bound to the app's database."""
    return request.app.state.database.unit_of_work()


def get_file_store(request: Request) -> LocalFileStore:
    return request.app.state.file_store


_bearer = HTTPBearer(auto_error=False)


def get_current_user(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(_bearer),
    uow: AbstractUnitOfWork = Depends(get_uow),
) -> AuthenticatedUser:
    if credentials is None or not credentials.credentials:
        raise AuthenticationError("Authentication required")
    try:
        claims = decode_token(credentials.credentials, request.app.state.config.JWT_SECRET)
    except TokenError as exc:
        raise AuthenticationError(str(exc)) from exc
    return ResolvePrincipalUseCase().execute(claims["sub"], uow)


def require(action: Action, resource: Resource):
    """Route guard: the current user must hold `action` on `resource`."""

    def dependency(user: AuthenticatedUser = Depends(get_current_user)) -> AuthenticatedUser:
        if not can(user, action, resource):
            raise AuthorizationError(
                f"You do not have permission to {action.value} {resource.value.lstrip('/')}"
            )
        return user

    return dependency


# ---------------------------------------------------------------------------
# Envelope helpers
# ---------------------------------------------------------------------------

def _plain(data: Any) -> Any:
    if dataclasses.is_dataclass(data) and not isinstance(data, type):
        return dataclasses.asdict(data)
    if isinstance(data, list):
        return [_plain(item) for item in data]
    return data


def _ok(data: Any = None, message: Optional[str] = None) -> Dict:
    """Wrap a DTO, a list of DTOs or a plain dict in the success envelope."""
    body: Dict[str, Any] = {"success": True}
    if data is not None:
        body["data"] = _plain(data)
    if message:
        body["message"] = message
    return body


def _paged(result: PagedDTO) -> Dict:
    return {
        "success": True,
        "data": _plain(result.items),
        "pagination": {
            "total": result.total,
            "page": result.page,
            "limit": result.limit,
            "total_pages": result.total_pages,
        },
    }


def _changes(body: BaseModel, *required: str) -> Dict[str, Any]:
    """Fields the client actually sent; required columns may not be nulled."""
    changes = body.model_dump(exclude_unset=True)
    for name in required:
        if name in changes and changes[name] is None:
            raise ApplicationError(f"{name} cannot be empty")
    return changes


def _incoming(files: List[UploadFile]) -> List[IncomingFile]:
    return [
        IncomingFile(filename=f.filename or "", content_type=f.content_type, content=f.file.read())
        for f in files
    ]


def _uploaded(result) -> Dict:
    message = result.message
    if result.failed:
        message += f"; failed: {', '.join(result.failed)}"
    return _ok(result.uploaded, message=message)


# ===========================================================================
# REQUEST BODY SCHEMAS  (Pydantic v2)
# ===========================================================================

class _Request(BaseModel):
    @field_validator("*", mode="before")
    @classmethod
    def blank_to_none(cls, v):
        # HTML forms send "" for untouched optional inputs
        if isinstance(v, str) and not v.strip():
            return None
        return v


# ---------------------------------------------------------------------------
# Auth & user schemas
# ---------------------------------------------------------------------------

class LoginRequest(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=6)


class ChangePasswordRequest(BaseModel):
    current_password: str = Field(..., min_length=1)
    new_password: str = Field(..., min_length=6)


class CreateUserRequest(_Request):
    name: str = Field(..., min_length=2, max_length=100)
    email: EmailStr
    password: str = Field(..., min_length=6)
    role_id: int = Field(..., gt=0)
    is_active: bool = True


class UpdateUserRequest(_Request):
    name: Optional[str] = Field(default=None, min_length=2, max_length=100)
    email: Optional[EmailStr] = None
    password: Optional[str] = Field(default=None, min_length=6)
    role_id: Optional[int] = Field(default=None, gt=0)
    is_active: Optional[bool] = None


# ---------------------------------------------------------------------------
# Access-control schemas
# ---------------------------------------------------------------------------

class CreateRoleRequest(_Request):
    role_name: str = Field(..., min_length=2, max_length=50)
    description: Optional[str] = None
    is_active: bool = True


class UpdateRoleRequest(_Request):
    role_name: Optional[str] = Field(default=None, min_length=2, max_length=50)
    description: Optional[str] = None
    is_active: Optional[bool] = None


class PermissionPair(BaseModel):
    page_id: int = Field(..., gt=0)
    permission_id: int = Field(..., gt=0)


class AssignPermissionsRequest(BaseModel):
    permissions: List[PermissionPair] = Field(
        default_factory=list, description="The complete new permission set for the role."
    )


class CreatePageRequest(_Request):
    page_name: str = Field(..., min_length=2, max_length=100)
    page_path: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None
    icon: Optional[str] = Field(default=None, max_length=50)
    is_active: bool = True
    display_order: int = Field(default=0, ge=0)

    @field_validator("page_path")
    @classmethod
    def path_must_be_absolute(cls, v: str) -> str:
        if not v.startswith("/"):
            raise ValueError("page_path must start with '/'")
        return v


class UpdatePageRequest(_Request):
    page_name: Optional[str] = Field(default=None, min_length=2, max_length=100)
    page_path: Optional[str] = Field(default=None, min_length=1, max_length=255)
    description: Optional[str] = None
    icon: Optional[str] = Field(default=None, max_length=50)
    is_active: Optional[bool] = None
    display_order: Optional[int] = Field(default=None, ge=0)

    @field_validator("page_path")
    @classmethod
    def path_must_be_absolute(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and not v.startswith("/"):
            raise ValueError("page_path must start with '/'")
        return v


class CreatePermissionRequest(_Request):
    permission_name: str = Field(..., min_length=2, max_length=50)
    description: Optional[str] = None


class UpdatePermissionRequest(_Request):
    permission_name: Optional[str] = Field(default=None, min_length=2, max_length=50)
    description: Optional[str] = None


# ---------------------------------------------------------------------------
# Reference-data schemas
# ---------------------------------------------------------------------------

class CreateVesselRequest(_Request):
    vessel_name: str = Field(..., min_length=2, max_length=255)
    vessel_code: str = Field(..., min_length=2, max_length=50)
    registration_number: Optional[str] = Field(default=None, max_length=100)
    status: VesselStatus = VesselStatus.ACTIVE


class UpdateVesselRequest(_Request):
    vessel_name: Optional[str] = Field(default=None, min_length=2, max_length=255)
    vessel_code: Optional[str] = Field(default=None, min_length=2, max_length=50)
    registration_number: Optional[str] = Field(default=None, max_length=100)
    status: Optional[VesselStatus] = None


class CreateAuditTypeRequest(_Request):
    type_name: str = Field(..., min_length=2, max_length=100)
    description: Optional[str] = None
    is_active: bool = True


class UpdateAuditTypeRequest(_Request):
    type_name: Optional[str] = Field(default=None, min_length=2, max_length=100)
    description: Optional[str] = None
    is_active: Optional[bool] = None


class CreateAuditPartyRequest(_Request):
    party_name: str = Field(..., min_length=2, max_length=100)
    description: Optional[str] = None
    is_active: bool = True


class UpdateAuditPartyRequest(_Request):
    party_name: Optional[str] = Field(default=None, min_length=2, max_length=100)
    description: Optional[str] = None
    is_active: Optional[bool] = None


class CreateAuditCompanyRequest(_Request):
    company_name: str = Field(..., min_length=2, max_length=255)
    contact_person: Optional[str] = Field(default=None, max_length=255)
    email: Optional[EmailStr] = None
    phone: Optional[str] = Field(default=None, max_length=50)
    address: Optional[str] = None
    is_active: bool = True


class UpdateAuditCompanyRequest(_Request):
    company_name: Optional[str] = Field(default=None, min_length=2, max_length=255)
    contact_person: Optional[str] = Field(default=None, max_length=255)
    email: Optional[EmailStr] = None
    phone: Optional[str] = Field(default=None, max_length=50)
    address: Optional[str] = None
    is_active: Optional[bool] = None


class CreateAuditorRequest(_Request):
    auditor_name: str = Field(..., min_length=2, max_length=255)
    audit_company_id: Optional[int] = Field(default=None, gt=0)
    certification: Optional[str] = Field(default=None, max_length=255)
    email: Optional[EmailStr] = None
    phone: Optional[str] = Field(default=None, max_length=50)
    specialization: Optional[str] = Field(default=None, max_length=255)
    is_active: bool = True


class UpdateAuditorRequest(_Request):
    auditor_name: Optional[str] = Field(default=None, min_length=2, max_length=255)
    audit_company_id: Optional[int] = Field(default=None, gt=0)
    certification: Optional[str] = Field(default=None, max_length=255)
    email: Optional[EmailStr] = None
    phone: Optional[str] = Field(default=None, max_length=50)
    specialization: Optional[str] = Field(default=None, max_length=255)
    is_active: Optional[bool] = None


class CreateAuditResultRequest(_Request):
    result_name: str = Field(..., min_length=2, max_length=100)
    description: Optional[str] = None
    is_active: bool = True


class UpdateAuditResultRequest(_Request):
    result_name: Optional[str] = Field(default=None, min_length=2, max_length=100)
    description: Optional[str] = None
    is_active: Optional[bool] = None


# ---------------------------------------------------------------------------
# Audit schemas
# ---------------------------------------------------------------------------

class CreateAuditRequest(_Request):
    vessel_id: int = Field(..., gt=0)
    audit_type_id: int = Field(..., gt=0)
    audit_party_id: int = Field(..., gt=0)
    audit_start_date: date
    audit_reference: Optional[str] = Field(default=None, max_length=50)
    audit_company_id: Optional[int] = Field(default=None, gt=0)
    audit_end_date: Optional[date] = None
    next_due_date: Optional[date] = None
    location: Optional[str] = Field(default=None, max_length=255)
    status: AuditStatus = AuditStatus.PLANNED
    audit_result_id: Optional[int] = Field(default=None, gt=0)
    remarks: Optional[str] = None


class UpdateAuditRequest(_Request):
    vessel_id: Optional[int] = Field(default=None, gt=0)
    audit_type_id: Optional[int] = Field(default=None, gt=0)
    audit_party_id: Optional[int] = Field(default=None, gt=0)
    audit_start_date: Optional[date] = None
    audit_reference: Optional[str] = Field(default=None, max_length=50)
    audit_company_id: Optional[int] = Field(default=None, gt=0)
    audit_end_date: Optional[date] = None
    next_due_date: Optional[date] = None
    location: Optional[str] = Field(default=None, max_length=255)
    status: Optional[AuditStatus] = None
    audit_result_id: Optional[int] = Field(default=None, gt=0)
    remarks: Optional[str] = None


class AssignAuditorRequest(_Request):
    auditor_id: int = Field(..., gt=0)
    role: str = Field(default="Auditor", min_length=2, max_length=100)


class UpdateAssignmentRequest(_Request):
    role: str = Field(..., min_length=2, max_length=100)


# ---------------------------------------------------------------------------
# Finding schemas
# ---------------------------------------------------------------------------

class CreateFindingRequest(_Request):
    audit_id: int = Field(..., gt=0)
    category: FindingCategory
    description: str = Field(..., min_length=10)
    root_cause: Optional[str] = None
    corrective_action: Optional[str] = None
    responsible_person: Optional[str] = Field(default=None, max_length=255)
    target_date: Optional[date] = None
    status: FindingStatus = FindingStatus.OPEN


class UpdateFindingRequest(_Request):
    audit_id: Optional[int] = Field(default=None, gt=0)
    category: Optional[FindingCategory] = None
    description: Optional[str] = Field(default=None, min_length=10)
    root_cause: Optional[str] = None
    corrective_action: Optional[str] = None
    responsible_person: Optional[str] = Field(default=None, max_length=255)
    target_date: Optional[date] = None
    status: Optional[FindingStatus] = None


# ---------------------------------------------------------------------------
# Settings schema
# ---------------------------------------------------------------------------

class UpdateSettingsRequest(_Request):
    company_name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    company_address: Optional[str] = None
    company_phone: Optional[str] = Field(default=None, max_length=50)
    company_email: Optional[EmailStr] = None
    contact_person: Optional[str] = Field(default=None, max_length=255)
    registration_number: Optional[str] = Field(default=None, max_length=100)
    tax_id: Optional[str] = Field(default=None, max_length=100)
    website: Optional[str] = Field(default=None, max_length=255)
    logo_path: Optional[str] = Field(default=None, max_length=500)


# ===========================================================================
# ROUTERS
# ===========================================================================

api = APIRouter(prefix="/api")


# ---------------------------------------------------------------------------
# Auth
# ---------------------------------------------------------------------------

auth_router = APIRouter(prefix="/auth", tags=["Auth"])


@auth_router.post("/login", summary="Exchange e-mail and password for a bearer token")
def login(
    body: LoginRequest,
    request: Request,
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    config: Config = request.app.state.config
    user = LoginUseCase().execute(LoginCommand(email=str(body.email), password=body.password), uow)
    token = create_token(
        user_id=user.id,
        email=user.email,
        name=user.name,
        role=user.role_name or "",
        secret=config.JWT_SECRET,
        expires_in=config.JWT_EXPIRES_IN,
    )
    logger.info("User %s logged in", user.email)
    return _ok({"token": token, "user": dataclasses.asdict(user)})


@auth_router.get("/me", summary="The authenticated user")
def me(
    user: AuthenticatedUser = Depends(get_current_user),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    from application import GetUserUseCase
    result = GetUserUseCase().execute(user.id, uow)
    data = dataclasses.asdict(result)
    data["permissions"] = [
        {"page_path": page, "permission_name": perm} for page, perm in sorted(user.grants)
    ]
    return _ok(data)


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------

user_router = APIRouter(prefix="/users", tags=["Users"])


@user_router.get("/roles", summary="Active roles, for user-form dropdowns")
def list_assignable_roles(
    _: AuthenticatedUser = Depends(require(Action.VIEW, Resource.USERS)),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    from application import ListActiveRolesUseCase
    return _ok(ListActiveRolesUseCase().execute(uow))


@user_router.post("/change-password", summary="Change the current user's password")
def change_password(
    body: ChangePasswordRequest,
    user: AuthenticatedUser = Depends(get_current_user),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    from application import ChangePasswordUseCase
    ChangePasswordUseCase().execute(
        ChangePasswordCommand(
            user_id=user.id,
            current_password=body.current_password,
            new_password=body.new_password,
        ),
        uow,
    )
    return _ok(message="Password changed successfully")


@user_router.get("", summary="List users")
def list_users(
    include_deleted: bool = Query(False),
    _: AuthenticatedUser = Depends(require(Action.VIEW, Resource.USERS)),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    from application import ListUsersUseCase
    return _ok(ListUsersUseCase().execute(uow, include_deleted=include_deleted))


@user_router.post("", status_code=status.HTTP_201_CREATED, summary="Create a user")
def create_user(
    body: CreateUserRequest,
    _: AuthenticatedUser = Depends(require(Action.CREATE, Resource.USERS)),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    from application import CreateUserUseCase
    cmd = CreateUserCommand(
        name=body.name,
        email=str(body.email),
        password=body.password,
        role_id=body.role_id,
        is_active=body.is_active,
    )
    return _ok(CreateUserUseCase().execute(cmd, uow), message="User created successfully")


@user_router.get("/{user_id}", summary="Get a user")
def get_user(
    user_id: int = Path(..., gt=0),
    _: AuthenticatedUser = Depends(require(Action.VIEW, Resource.USERS)),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    from application import GetUserUseCase
    return _ok(GetUserUseCase().execute(user_id, uow))


@user_router.put("/{user_id}", summary="Update a user")
def update_user(
    body: UpdateUserRequest,
    user_id: int = Path(..., gt=0),
    _: AuthenticatedUser = Depends(require(Action.UPDATE, Resource.USERS)),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    from application import UpdateUserCommand, UpdateUserUseCase
    changes = _changes(body, "name", "email", "role_id", "is_active")
    if "email" in changes:
        changes["email"] = str(changes["email"])
    result = UpdateUserUseCase().execute(UpdateUserCommand(user_id=user_id, changes=changes), uow)
    return _ok(result, message="User updated successfully")


@user_router.delete("/{user_id}", summary="Soft-delete a user")
def delete_user(
    user_id: int = Path(..., gt=0),
    user: AuthenticatedUser = Depends(require(Action.DELETE, Resource.USERS)),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    from application import DeleteUserCommand, DeleteUserUseCase
    DeleteUserUseCase().execute(DeleteUserCommand(user_id=user_id, acting_user_id=user.id), uow)
    return _ok(message="User deleted successfully")


@user_router.post("/{user_id}/restore", summary="Restore a soft-deleted user")
def restore_user(
    user_id: int = Path(..., gt=0),
    _: AuthenticatedUser = Depends(require(Action.DELETE, Resource.USERS)),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    from application import RestoreUserUseCase
    return _ok(RestoreUserUseCase().execute(user_id, uow), message="User restored successfully")


# ---------------------------------------------------------------------------
# Roles & permission matrix
# ---------------------------------------------------------------------------

role_router = APIRouter(prefix="/roles", tags=["Roles & Permissions"])


@role_router.get("/permissions/matrix", summary="Every role with its grants")
def permission_matrix(
    _: AuthenticatedUser = Depends(require(Action.VIEW, Resource.ROLES)),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    from application import GetPermissionMatrixUseCase, ListPagesUseCase, ListPermissionsUseCase
    return _ok({
        "roles": _plain(GetPermissionMatrixUseCase().execute(uow)),
        "pages": _plain(ListPagesUseCase().execute(uow)),
        "permissions": _plain(ListPermissionsUseCase().execute(uow)),
    })


@role_router.get("", summary="List roles")
def list_roles(
    _: AuthenticatedUser = Depends(require(Action.VIEW, Resource.ROLES)),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    from application import ListRolesUseCase
    return _ok(ListRolesUseCase().execute(uow))


@role_router.post("", status_code=status.HTTP_201_CREATED, summary="Create a role")
def create_role(
    body: CreateRoleRequest,
    _: AuthenticatedUser = Depends(require(Action.CREATE, Resource.ROLES)),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    from application import CreateRoleCommand, CreateRoleUseCase
    cmd = CreateRoleCommand(role_name=body.role_name, description=body.description, is_active=body.is_active)
    return _ok(CreateRoleUseCase().execute(cmd, uow), message="Role created successfully")


@role_router.get("/{role_id}", summary="Get a role with its permissions")
def get_role(
    role_id: int = Path(..., gt=0),
    _: AuthenticatedUser = Depends(require(Action.VIEW, Resource.ROLES)),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    from application import GetRoleUseCase
    return _ok(GetRoleUseCase().execute(role_id, uow))


@role_router.put("/{role_id}", summary="Update a role")
def update_role(
    body: UpdateRoleRequest,
    role_id: int = Path(..., gt=0),
    _: AuthenticatedUser = Depends(require(Action.UPDATE, Resource.ROLES)),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    from application import UpdateRoleCommand, UpdateRoleUseCase
    cmd = UpdateRoleCommand(role_id=role_id, changes=_changes(body, "role_name", "is_active"))
    return _ok(UpdateRoleUseCase().execute(cmd, uow), message="Role updated successfully")


@role_router.delete("/{role_id}", summary="Delete a role with no users")
def delete_role(
    role_id: int = Path(..., gt=0),
    _: AuthenticatedUser = Depends(require(Action.DELETE, Resource.ROLES)),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    from application import DeleteRoleUseCase
    DeleteRoleUseCase().execute(role_id, uow)
    return _ok(message="Role deleted successfully")


@role_router.get("/{role_id}/permissions", summary="A role's grants")
def get_role_permissions(
    role_id: int = Path(..., gt=0),
    _: AuthenticatedUser = Depends(require(Action.VIEW, Resource.ROLES)),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    from application import GetRolePermissionsUseCase
    return _ok(GetRolePermissionsUseCase().execute(role_id, uow))


@role_router.put("/{role_id}/permissions", summary="Replace a role's grants")
def assign_role_permissions(
    body: AssignPermissionsRequest,
    role_id: int = Path(..., gt=0),
    _: AuthenticatedUser = Depends(require(Action.UPDATE, Resource.ROLES)),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    """
    The body is the complete new permission set; anything not listed is
    revoked.  Delete and insert happen in one transaction.
    """
    from application import AssignRolePermissionsUseCase
    cmd = AssignRolePermissionsCommand(
        role_id=role_id,
        pairs=[(p.page_id, p.permission_id) for p in body.permissions],
    )
    return _ok(AssignRolePermissionsUseCase().execute(cmd, uow), message="Permissions updated successfully")


# ---------------------------------------------------------------------------
# Pages & permissions (matrix axes)
# ---------------------------------------------------------------------------

page_router = APIRouter(prefix="/pages", tags=["Roles & Permissions"])


@page_router.get("", summary="List pages")
def list_pages(
    _: AuthenticatedUser = Depends(require(Action.VIEW, Resource.ROLES)),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    from application import ListPagesUseCase
    return _ok(ListPagesUseCase().execute(uow))


@page_router.post("", status_code=status.HTTP_201_CREATED, summary="Create a page")
def create_page(
    body: CreatePageRequest,
    _: AuthenticatedUser = Depends(require(Action.CREATE, Resource.ROLES)),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    from application import CreatePageCommand, CreatePageUseCase
    cmd = CreatePageCommand(**body.model_dump())
    return _ok(CreatePageUseCase().execute(cmd, uow), message="Page created successfully")


@page_router.get("/{page_id}", summary="Get a page")
def get_page(
    page_id: int = Path(..., gt=0),
    _: AuthenticatedUser = Depends(require(Action.VIEW, Resource.ROLES)),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    from application import GetPageUseCase
    return _ok(GetPageUseCase().execute(page_id, uow))


@page_router.put("/{page_id}", summary="Update a page")
def update_page(
    body: UpdatePageRequest,
    page_id: int = Path(..., gt=0),
    _: AuthenticatedUser = Depends(require(Action.UPDATE, Resource.ROLES)),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    from application import UpdatePageCommand, UpdatePageUseCase
    changes = _changes(body, "page_name", "page_path", "is_active", "display_order")
    return _ok(UpdatePageUseCase().execute(UpdatePageCommand(page_id=page_id, changes=changes), uow))


@page_router.delete("/{page_id}", summary="Delete an unused page")
def delete_page(
    page_id: int = Path(..., gt=0),
    _: AuthenticatedUser = Depends(require(Action.DELETE, Resource.ROLES)),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    from application import DeletePageUseCase
    DeletePageUseCase().execute(page_id, uow)
    return _ok(message="Page deleted successfully")


permission_router = APIRouter(prefix="/permissions", tags=["Roles & Permissions"])


@permission_router.get("", summary="List permissions")
def list_permissions(
    _: AuthenticatedUser = Depends(require(Action.VIEW, Resource.ROLES)),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    from application import ListPermissionsUseCase
    return _ok(ListPermissionsUseCase().execute(uow))


@permission_router.post("", status_code=status.HTTP_201_CREATED, summary="Create a permission")
def create_permission(
    body: CreatePermissionRequest,
    _: AuthenticatedUser = Depends(require(Action.CREATE, Resource.ROLES)),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    from application import CreatePermissionCommand, CreatePermissionUseCase
    cmd = CreatePermissionCommand(permission_name=body.permission_name, description=body.description)
    return _ok(CreatePermissionUseCase().execute(cmd, uow), message="Permission created successfully")


@permission_router.get("/{permission_id}", summary="Get a permission")
def get_permission(
    permission_id: int = Path(..., gt=0),
    _: AuthenticatedUser = Depends(require(Action.VIEW, Resource.ROLES)),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    from application import GetPermissionUseCase
    return _ok(GetPermissionUseCase().execute(permission_id, uow))


@permission_router.put("/{permission_id}", summary="Update a permission")
def update_permission(
    body: UpdatePermissionRequest,
    permission_id: int = Path(..., gt=0),
    _: AuthenticatedUser = Depends(require(Action.UPDATE, Resource.ROLES)),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    from application import UpdatePermissionCommand, UpdatePermissionUseCase
    cmd = UpdatePermissionCommand(permission_id=permission_id, changes=_changes(body, "permission_name"))
    return _ok(UpdatePermissionUseCase().execute(cmd, uow))


@permission_router.delete("/{permission_id}", summary="Delete an unused permission")
def delete_permission(
    permission_id: int = Path(..., gt=0),
    _: AuthenticatedUser = Depends(require(Action.DELETE, Resource.ROLES)),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    from application import DeletePermissionUseCase
    DeletePermissionUseCase().execute(permission_id, uow)
    return _ok(message="Permission deleted successfully")


# ---------------------------------------------------------------------------
# Vessels
# ---------------------------------------------------------------------------

vessel_router = APIRouter(prefix="/vessels", tags=["Vessels"])


@vessel_router.get("", summary="List vessels")
def list_vessels(
    vessel_status: Optional[VesselStatus] = Query(None, alias="status"),
    _: AuthenticatedUser = Depends(require(Action.VIEW, Resource.VESSELS)),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    from application import ListVesselsUseCase
    return _ok(ListVesselsUseCase().execute(uow, status=vessel_status))


@vessel_router.post("", status_code=status.HTTP_201_CREATED, summary="Register a vessel")
def create_vessel(
    body: CreateVesselRequest,
    _: AuthenticatedUser = Depends(require(Action.CREATE, Resource.VESSELS)),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    from application import CreateVesselUseCase
    cmd = CreateVesselCommand(
        vessel_name=body.vessel_name,
        vessel_code=body.vessel_code,
        registration_number=body.registration_number,
        status=body.status,
    )
    return _ok(CreateVesselUseCase().execute(cmd, uow), message="Vessel created successfully")


@vessel_router.get("/{vessel_id}", summary="Get a vessel")
def get_vessel(
    vessel_id: int = Path(..., gt=0),
    _: AuthenticatedUser = Depends(require(Action.VIEW, Resource.VESSELS)),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    from application import GetVesselUseCase
    return _ok(GetVesselUseCase().execute(vessel_id, uow))


@vessel_router.put("/{vessel_id}", summary="Update a vessel")
def update_vessel(
    body: UpdateVesselRequest,
    vessel_id: int = Path(..., gt=0),
    _: AuthenticatedUser = Depends(require(Action.UPDATE, Resource.VESSELS)),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    from application import UpdateVesselCommand, UpdateVesselUseCase
    cmd = UpdateVesselCommand(vessel_id=vessel_id, changes=_changes(body, "vessel_name", "vessel_code", "status"))
    return _ok(UpdateVesselUseCase().execute(cmd, uow), message="Vessel updated successfully")


@vessel_router.delete("/{vessel_id}", summary="Delete a vessel with no audits")
def delete_vessel(
    vessel_id: int = Path(..., gt=0),
    _: AuthenticatedUser = Depends(require(Action.DELETE, Resource.VESSELS)),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    from application import DeleteVesselUseCase
    DeleteVesselUseCase().execute(vessel_id, uow)
    return _ok(message="Vessel deleted successfully")


# ---------------------------------------------------------------------------
# Audit types
# ---------------------------------------------------------------------------

audit_type_router = APIRouter(prefix="/audit-types", tags=["Reference Data"])


@audit_type_router.get("", summary="List audit types")
def list_audit_types(
    active_only: bool = Query(False),
    _: AuthenticatedUser = Depends(require(Action.VIEW, Resource.AUDIT_TYPES)),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    from application import ListAuditTypesUseCase
    return _ok(ListAuditTypesUseCase().execute(uow, active_only=active_only))


@audit_type_router.post("", status_code=status.HTTP_201_CREATED, summary="Create an audit type")
def create_audit_type(
    body: CreateAuditTypeRequest,
    _: AuthenticatedUser = Depends(require(Action.CREATE, Resource.AUDIT_TYPES)),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    from application import CreateAuditTypeCommand, CreateAuditTypeUseCase
    cmd = CreateAuditTypeCommand(type_name=body.type_name, description=body.description, is_active=body.is_active)
    return _ok(CreateAuditTypeUseCase().execute(cmd, uow), message="Audit type created successfully")


@audit_type_router.get("/{type_id}", summary="Get an audit type")
def get_audit_type(
    type_id: int = Path(..., gt=0),
    _: AuthenticatedUser = Depends(require(Action.VIEW, Resource.AUDIT_TYPES)),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    from application import GetAuditTypeUseCase
    return _ok(GetAuditTypeUseCase().execute(type_id, uow))


@audit_type_router.put("/{type_id}", summary="Update an audit type")
def update_audit_type(
    body: UpdateAuditTypeRequest,
    type_id: int = Path(..., gt=0),
    _: AuthenticatedUser = Depends(require(Action.UPDATE, Resource.AUDIT_TYPES)),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    from application import UpdateAuditTypeUseCase
    cmd = UpdateLookupCommand(entity_id=type_id, changes=_changes(body, "type_name", "is_active"))
    return _ok(UpdateAuditTypeUseCase().execute(cmd, uow), message="Audit type updated successfully")


@audit_type_router.delete("/{type_id}", summary="Delete an unused audit type")
def delete_audit_type(
    type_id: int = Path(..., gt=0),
    _: AuthenticatedUser = Depends(require(Action.DELETE, Resource.AUDIT_TYPES)),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    from application import DeleteAuditTypeUseCase
    DeleteAuditTypeUseCase().execute(type_id, uow)
    return _ok(message="Audit type deleted successfully")


# ---------------------------------------------------------------------------
# Audit parties (soft delete)
# ---------------------------------------------------------------------------

audit_party_router = APIRouter(prefix="/audit-parties", tags=["Reference Data"])


@audit_party_router.get("", summary="List audit parties")
def list_audit_parties(
    include_deleted: bool = Query(False),
    active_only: bool = Query(False),
    _: AuthenticatedUser = Depends(require(Action.VIEW, Resource.AUDIT_PARTIES)),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    from application import ListAuditPartiesUseCase
    return _ok(ListAuditPartiesUseCase().execute(uow, include_deleted=include_deleted, active_only=active_only))


@audit_party_router.post("", status_code=status.HTTP_201_CREATED, summary="Create an audit party")
def create_audit_party(
    body: CreateAuditPartyRequest,
    _: AuthenticatedUser = Depends(require(Action.CREATE, Resource.AUDIT_PARTIES)),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    from application import CreateAuditPartyCommand, CreateAuditPartyUseCase
    cmd = CreateAuditPartyCommand(party_name=body.party_name, description=body.description, is_active=body.is_active)
    return _ok(CreateAuditPartyUseCase().execute(cmd, uow), message="Audit party created successfully")


@audit_party_router.get("/{party_id}", summary="Get an audit party")
def get_audit_party(
    party_id: int = Path(..., gt=0),
    _: AuthenticatedUser = Depends(require(Action.VIEW, Resource.AUDIT_PARTIES)),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    from application import GetAuditPartyUseCase
    return _ok(GetAuditPartyUseCase().execute(party_id, uow))


@audit_party_router.put("/{party_id}", summary="Update an audit party")
def update_audit_party(
    body: UpdateAuditPartyRequest,
    party_id: int = Path(..., gt=0),
    _: AuthenticatedUser = Depends(require(Action.UPDATE, Resource.AUDIT_PARTIES)),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    from application import UpdateAuditPartyUseCase
    cmd = UpdateLookupCommand(entity_id=party_id, changes=_changes(body, "party_name", "is_active"))
    return _ok(UpdateAuditPartyUseCase().execute(cmd, uow), message="Audit party updated successfully")


@audit_party_router.delete("/{party_id}", summary="Soft-delete an audit party")
def delete_audit_party(
    party_id: int = Path(..., gt=0),
    user: AuthenticatedUser = Depends(require(Action.DELETE, Resource.AUDIT_PARTIES)),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    from application import DeleteAuditPartyUseCase
    DeleteAuditPartyUseCase().execute(SoftDeleteCommand(entity_id=party_id, acting_user_id=user.id), uow)
    return _ok(message="Audit party deleted successfully")


@audit_party_router.post("/{party_id}/restore", summary="Restore a soft-deleted audit party")
def restore_audit_party(
    party_id: int = Path(..., gt=0),
    _: AuthenticatedUser = Depends(require(Action.DELETE, Resource.AUDIT_PARTIES)),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    from application import RestoreAuditPartyUseCase
    return _ok(RestoreAuditPartyUseCase().execute(party_id, uow), message="Audit party restored successfully")


# ---------------------------------------------------------------------------
# Audit companies
# ---------------------------------------------------------------------------

audit_company_router = APIRouter(prefix="/audit-companies", tags=["Reference Data"])


@audit_company_router.get("", summary="List audit companies")
def list_audit_companies(
    active_only: bool = Query(False),
    _: AuthenticatedUser = Depends(require(Action.VIEW, Resource.AUDIT_COMPANIES)),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    from application import ListAuditCompaniesUseCase
    return _ok(ListAuditCompaniesUseCase().execute(uow, active_only=active_only))


@audit_company_router.post("", status_code=status.HTTP_201_CREATED, summary="Create an audit company")
def create_audit_company(
    body: CreateAuditCompanyRequest,
    _: AuthenticatedUser = Depends(require(Action.CREATE, Resource.AUDIT_COMPANIES)),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    from application import CreateAuditCompanyCommand, CreateAuditCompanyUseCase
    cmd = CreateAuditCompanyCommand(
        company_name=body.company_name,
        contact_person=body.contact_person,
        email=str(body.email) if body.email else None,
        phone=body.phone,
        address=body.address,
        is_active=body.is_active,
    )
    return _ok(CreateAuditCompanyUseCase().execute(cmd, uow), message="Audit company created successfully")


@audit_company_router.get("/{company_id}", summary="Get an audit company")
def get_audit_company(
    company_id: int = Path(..., gt=0),
    _: AuthenticatedUser = Depends(require(Action.VIEW, Resource.AUDIT_COMPANIES)),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    from application import GetAuditCompanyUseCase
    return _ok(GetAuditCompanyUseCase().execute(company_id, uow))


@audit_company_router.put("/{company_id}", summary="Update an audit company")
def update_audit_company(
    body: UpdateAuditCompanyRequest,
    company_id: int = Path(..., gt=0),
    _: AuthenticatedUser = Depends(require(Action.UPDATE, Resource.AUDIT_COMPANIES)),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    from application import UpdateAuditCompanyUseCase
    changes = _changes(body, "company_name", "is_active")
    if changes.get("email"):
        changes["email"] = str(changes["email"])
    cmd = UpdateLookupCommand(entity_id=company_id, changes=changes)
    return _ok(UpdateAuditCompanyUseCase().execute(cmd, uow), message="Audit company updated successfully")


@audit_company_router.delete("/{company_id}", summary="Delete an unused audit company")
def delete_audit_company(
    company_id: int = Path(..., gt=0),
    _: AuthenticatedUser = Depends(require(Action.DELETE, Resource.AUDIT_COMPANIES)),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    from application import DeleteAuditCompanyUseCase
    DeleteAuditCompanyUseCase().execute(company_id, uow)
    return _ok(message="Audit company deleted successfully")


# ---------------------------------------------------------------------------
# Auditors
# ---------------------------------------------------------------------------

auditor_router = APIRouter(prefix="/auditors", tags=["Reference Data"])


@auditor_router.get("", summary="List auditors")
def list_auditors(
    audit_company_id: Optional[int] = Query(None, gt=0),
    active_only: bool = Query(False),
    _: AuthenticatedUser = Depends(require(Action.VIEW, Resource.AUDITORS)),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    from application import ListAuditorsUseCase
    return _ok(ListAuditorsUseCase().execute(uow, audit_company_id=audit_company_id, active_only=active_only))


@auditor_router.post("", status_code=status.HTTP_201_CREATED, summary="Create an auditor")
def create_auditor(
    body: CreateAuditorRequest,
    _: AuthenticatedUser = Depends(require(Action.CREATE, Resource.AUDITORS)),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    from application import CreateAuditorCommand, CreateAuditorUseCase
    cmd = CreateAuditorCommand(
        auditor_name=body.auditor_name,
        audit_company_id=body.audit_company_id,
        certification=body.certification,
        email=str(body.email) if body.email else None,
        phone=body.phone,
        specialization=body.specialization,
        is_active=body.is_active,
    )
    return _ok(CreateAuditorUseCase().execute(cmd, uow), message="Auditor created successfully")


@auditor_router.get("/{auditor_id}", summary="Get an auditor")
def get_auditor(
    auditor_id: int = Path(..., gt=0),
    _: AuthenticatedUser = Depends(require(Action.VIEW, Resource.AUDITORS)),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    from application import GetAuditorUseCase
    return _ok(GetAuditorUseCase().execute(auditor_id, uow))


@auditor_router.put("/{auditor_id}", summary="Update an auditor")
def update_auditor(
    body: UpdateAuditorRequest,
    auditor_id: int = Path(..., gt=0),
    _: AuthenticatedUser = Depends(require(Action.UPDATE, Resource.AUDITORS)),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    from application import UpdateAuditorUseCase
    changes = _changes(body, "auditor_name", "is_active")
    if changes.get("email"):
        changes["email"] = str(changes["email"])
    cmd = UpdateLookupCommand(entity_id=auditor_id, changes=changes)
    return _ok(UpdateAuditorUseCase().execute(cmd, uow), message="Auditor updated successfully")


@auditor_router.delete("/{auditor_id}", summary="Delete an unassigned auditor")
def delete_auditor(
    auditor_id: int = Path(..., gt=0),
    _: AuthenticatedUser = Depends(require(Action.DELETE, Resource.AUDITORS)),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    from application import DeleteAuditorUseCase
    DeleteAuditorUseCase().execute(auditor_id, uow)
    return _ok(message="Auditor deleted successfully")


# ---------------------------------------------------------------------------
# Audit results
# ---------------------------------------------------------------------------

audit_result_router = APIRouter(prefix="/audit-results", tags=["Reference Data"])


@audit_result_router.get("", summary="List audit results")
def list_audit_results(
    active_only: bool = Query(False),
    _: AuthenticatedUser = Depends(require(Action.VIEW, Resource.AUDIT_RESULTS)),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    from application import ListAuditResultsUseCase
    return _ok(ListAuditResultsUseCase().execute(uow, active_only=active_only))


@audit_result_router.post("", status_code=status.HTTP_201_CREATED, summary="Create an audit result")
def create_audit_result(
    body: CreateAuditResultRequest,
    _: AuthenticatedUser = Depends(require(Action.CREATE, Resource.AUDIT_RESULTS)),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    from application import CreateAuditResultCommand, CreateAuditResultUseCase
    cmd = CreateAuditResultCommand(
        result_name=body.result_name, description=body.description, is_active=body.is_active
    )
    return _ok(CreateAuditResultUseCase().execute(cmd, uow), message="Audit result created successfully")


@audit_result_router.get("/{result_id}", summary="Get an audit result")
def get_audit_result(
    result_id: int = Path(..., gt=0),
    _: AuthenticatedUser = Depends(require(Action.VIEW, Resource.AUDIT_RESULTS)),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    from application import GetAuditResultUseCase
    return _ok(GetAuditResultUseCase().execute(result_id, uow))


@audit_result_router.put("/{result_id}", summary="Update an audit result")
def update_audit_result(
    body: UpdateAuditResultRequest,
    result_id: int = Path(..., gt=0),
    _: AuthenticatedUser = Depends(require(Action.UPDATE, Resource.AUDIT_RESULTS)),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    from application import UpdateAuditResultUseCase
    cmd = UpdateLookupCommand(entity_id=result_id, changes=_changes(body, "result_name", "is_active"))
    return _ok(UpdateAuditResultUseCase().execute(cmd, uow), message="Audit result updated successfully")


@audit_result_router.delete("/{result_id}", summary="Delete an unused audit result")
def delete_audit_result(
    result_id: int = Path(..., gt=0),
    _: AuthenticatedUser = Depends(require(Action.DELETE, Resource.AUDIT_RESULTS)),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    from application import DeleteAuditResultUseCase
    DeleteAuditResultUseCase().execute(result_id, uow)
    return _ok(message="Audit result deleted successfully")


# ---------------------------------------------------------------------------
# Audits
# ---------------------------------------------------------------------------

audit_router = APIRouter(prefix="/audits", tags=["Audits"])


def _audit_filters(
    vessel_id: Optional[int] = Query(None, gt=0),
    audit_type_id: Optional[int] = Query(None, gt=0),
    audit_party_id: Optional[int] = Query(None, gt=0),
    audit_status: Optional[AuditStatus] = Query(None, alias="status"),
    date_from: Optional[date] = Query(None),
    date_to: Optional[date] = Query(None),
) -> AuditFilters:
    return AuditFilters(
        vessel_id=vessel_id,
        audit_type_id=audit_type_id,
        audit_party_id=audit_party_id,
        status=audit_status,
        date_from=date_from,
        date_to=date_to,
    )


@audit_router.get("", summary="List audits (paginated, filterable)")
def list_audits(
    filters: AuditFilters = Depends(_audit_filters),
    page: Optional[str] = Query(None),
    limit: Optional[str] = Query(None),
    include_deleted: bool = Query(False),
    _: AuthenticatedUser = Depends(require(Action.VIEW, Resource.AUDITS)),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    from application import ListAuditsUseCase
    query = ListAuditsQuery(filters=filters, page=page, limit=limit, include_deleted=include_deleted)
    return _paged(ListAuditsUseCase().execute(query, uow))


@audit_router.post("", status_code=status.HTTP_201_CREATED, summary="Create an audit")
def create_audit(
    body: CreateAuditRequest,
    user: AuthenticatedUser = Depends(require(Action.CREATE, Resource.AUDITS)),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    """
    When audit_reference is omitted one is generated as AUD-<YY>-<id:05>
    in the same transaction as the insert.
    """
    from application import CreateAuditUseCase
    cmd = CreateAuditCommand(acting_user_id=user.id, **body.model_dump())
    return _ok(CreateAuditUseCase().execute(cmd, uow), message="Audit created successfully")


@audit_router.get("/{audit_id}", summary="Get an audit with its findings and auditors")
def get_audit(
    audit_id: int = Path(..., gt=0),
    _: AuthenticatedUser = Depends(require(Action.VIEW, Resource.AUDITS)),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    from application import GetAuditUseCase
    return _ok(GetAuditUseCase().execute(audit_id, uow))


@audit_router.put("/{audit_id}", summary="Update an audit")
def update_audit(
    body: UpdateAuditRequest,
    audit_id: int = Path(..., gt=0),
    _: AuthenticatedUser = Depends(require(Action.UPDATE, Resource.AUDITS)),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    from application import UpdateAuditUseCase
    changes = _changes(
        body, "vessel_id", "audit_type_id", "audit_party_id", "audit_start_date", "status"
    )
    result = UpdateAuditUseCase().execute(UpdateAuditCommand(audit_id=audit_id, changes=changes), uow)
    return _ok(result, message="Audit updated successfully")


@audit_router.delete("/{audit_id}", summary="Soft-delete an audit")
def delete_audit(
    audit_id: int = Path(..., gt=0),
    user: AuthenticatedUser = Depends(require(Action.DELETE, Resource.AUDITS)),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    from application import DeleteAuditUseCase
    DeleteAuditUseCase().execute(SoftDeleteCommand(entity_id=audit_id, acting_user_id=user.id), uow)
    return _ok(message="Audit deleted successfully")


@audit_router.post("/{audit_id}/restore", summary="Restore a soft-deleted audit")
def restore_audit(
    audit_id: int = Path(..., gt=0),
    _: AuthenticatedUser = Depends(require(Action.DELETE, Resource.AUDITS)),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    from application import RestoreAuditUseCase
    return _ok(RestoreAuditUseCase().execute(audit_id, uow), message="Audit restored successfully")


@audit_router.post("/{audit_id}/report", summary="Upload the audit report file")
def upload_audit_report(
    audit_id: int = Path(..., gt=0),
    file: UploadFile = File(...),
    _: AuthenticatedUser = Depends(require(Action.UPLOAD, Resource.AUDITS)),
    uow: AbstractUnitOfWork = Depends(get_uow),
    file_store: LocalFileStore = Depends(get_file_store),
):
    from application import UploadAuditReportCommand, UploadAuditReportUseCase
    cmd = UploadAuditReportCommand(audit_id=audit_id, file=_incoming([file])[0])
    return _ok(UploadAuditReportUseCase(file_store).execute(cmd, uow), message="Report uploaded successfully")


@audit_router.get("/{audit_id}/attachments", summary="List audit attachments")
def list_audit_attachments(
    audit_id: int = Path(..., gt=0),
    _: AuthenticatedUser = Depends(require(Action.VIEW, Resource.AUDITS)),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    from application import ListAuditAttachmentsUseCase
    return _ok(ListAuditAttachmentsUseCase().execute(audit_id, uow))


@audit_router.post(
    "/{audit_id}/attachments",
    status_code=status.HTTP_201_CREATED,
    summary="Upload one or more audit attachments",
)
def upload_audit_attachments(
    audit_id: int = Path(..., gt=0),
    files: List[UploadFile] = File(...),
    user: AuthenticatedUser = Depends(require(Action.UPLOAD, Resource.AUDITS)),
    uow: AbstractUnitOfWork = Depends(get_uow),
    file_store: LocalFileStore = Depends(get_file_store),
):
    from application import AddAuditAttachmentsUseCase
    cmd = AddAttachmentsCommand(parent_id=audit_id, files=_incoming(files), acting_user_id=user.id)
    return _uploaded(AddAuditAttachmentsUseCase(file_store).execute(cmd, uow))


@audit_router.delete("/{audit_id}/attachments/{attachment_id}", summary="Delete an audit attachment")
def delete_audit_attachment(
    audit_id: int = Path(..., gt=0),
    attachment_id: int = Path(..., gt=0),
    _: AuthenticatedUser = Depends(require(Action.DELETE, Resource.AUDITS)),
    uow: AbstractUnitOfWork = Depends(get_uow),
    file_store: LocalFileStore = Depends(get_file_store),
):
    from application import DeleteAuditAttachmentUseCase
    DeleteAuditAttachmentUseCase(file_store).execute(
        DeleteAttachmentCommand(parent_id=audit_id, attachment_id=attachment_id), uow
    )
    return _ok(message="Attachment deleted successfully")


@audit_router.get("/{audit_id}/auditors", summary="List auditors assigned to an audit")
def list_audit_auditors(
    audit_id: int = Path(..., gt=0),
    _: AuthenticatedUser = Depends(require(Action.VIEW, Resource.AUDITS)),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    from application import ListAuditAuditorsUseCase
    return _ok(ListAuditAuditorsUseCase().execute(audit_id, uow))


@audit_router.post(
    "/{audit_id}/auditors",
    status_code=status.HTTP_201_CREATED,
    summary="Assign an auditor to an audit",
)
def assign_auditor(
    body: AssignAuditorRequest,
    audit_id: int = Path(..., gt=0),
    _: AuthenticatedUser = Depends(require(Action.UPDATE, Resource.AUDITS)),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    from application import AssignAuditorUseCase
    cmd = AssignAuditorCommand(audit_id=audit_id, auditor_id=body.auditor_id, role=body.role)
    return _ok(AssignAuditorUseCase().execute(cmd, uow), message="Auditor assigned successfully")


@audit_router.put("/{audit_id}/auditors/{assignment_id}", summary="Change an assigned auditor's role")
def update_auditor_assignment(
    body: UpdateAssignmentRequest,
    audit_id: int = Path(..., gt=0),
    assignment_id: int = Path(..., gt=0),
    _: AuthenticatedUser = Depends(require(Action.UPDATE, Resource.AUDITS)),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    from application import UpdateAssignmentCommand, UpdateAuditorAssignmentUseCase
    cmd = UpdateAssignmentCommand(audit_id=audit_id, assignment_id=assignment_id, role=body.role)
    return _ok(UpdateAuditorAssignmentUseCase().execute(cmd, uow))


@audit_router.delete("/{audit_id}/auditors/{assignment_id}", summary="Unassign an auditor")
def remove_auditor_assignment(
    audit_id: int = Path(..., gt=0),
    assignment_id: int = Path(..., gt=0),
    _: AuthenticatedUser = Depends(require(Action.UPDATE, Resource.AUDITS)),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    from application import RemoveAuditorAssignmentUseCase
    RemoveAuditorAssignmentUseCase().execute(audit_id, assignment_id, uow)
    return _ok(message="Auditor removed from audit")


# ---------------------------------------------------------------------------
# Findings
# ---------------------------------------------------------------------------

finding_router = APIRouter(prefix="/findings", tags=["Findings"])


@finding_router.post("/update-overdue", summary="Mark every past-due open finding Overdue")
def update_overdue_findings(
    _: AuthenticatedUser = Depends(require(Action.UPDATE, Resource.FINDINGS)),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    from application import SweepOverdueFindingsUseCase
    count = SweepOverdueFindingsUseCase().execute(uow)
    return _ok({"updated": count}, message=f"{count} finding(s) marked as overdue")


@finding_router.get("", summary="List findings (paginated, filterable)")
def list_findings(
    audit_id: Optional[int] = Query(None, gt=0),
    category: Optional[FindingCategory] = Query(None),
    finding_status: Optional[FindingStatus] = Query(None, alias="status"),
    page: Optional[str] = Query(None),
    limit: Optional[str] = Query(None),
    include_deleted: bool = Query(False),
    _: AuthenticatedUser = Depends(require(Action.VIEW, Resource.FINDINGS)),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    from application import ListFindingsUseCase
    query = ListFindingsQuery(
        filters=FindingFilters(audit_id=audit_id, category=category, status=finding_status),
        page=page,
        limit=limit,
        include_deleted=include_deleted,
    )
    return _paged(ListFindingsUseCase().execute(query, uow))


@finding_router.post("", status_code=status.HTTP_201_CREATED, summary="Record a finding")
def create_finding(
    body: CreateFindingRequest,
    user: AuthenticatedUser = Depends(require(Action.CREATE, Resource.FINDINGS)),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    """A finding whose target date has already passed is stored as Overdue."""
    from application import CreateFindingUseCase
    cmd = CreateFindingCommand(acting_user_id=user.id, **body.model_dump())
    return _ok(CreateFindingUseCase().execute(cmd, uow), message="Finding created successfully")


@finding_router.get("/{finding_id}", summary="Get a finding with its evidence")
def get_finding(
    finding_id: int = Path(..., gt=0),
    _: AuthenticatedUser = Depends(require(Action.VIEW, Resource.FINDINGS)),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    from application import GetFindingUseCase
    return _ok(GetFindingUseCase().execute(finding_id, uow))


@finding_router.put("/{finding_id}", summary="Update a finding")
def update_finding(
    body: UpdateFindingRequest,
    finding_id: int = Path(..., gt=0),
    _: AuthenticatedUser = Depends(require(Action.UPDATE, Resource.FINDINGS)),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    """
    Status may be moved between Open, In Progress and Submitted here.
    Use /close and /reopen for the other transitions; Overdue is derived.
    """
    from application import UpdateFindingUseCase
    changes = _changes(body, "audit_id", "category", "description", "status")
    result = UpdateFindingUseCase().execute(UpdateFindingCommand(finding_id=finding_id, changes=changes), uow)
    return _ok(result, message="Finding updated successfully")


@finding_router.post("/{finding_id}/close", summary="Close a finding")
def close_finding(
    finding_id: int = Path(..., gt=0),
    _: AuthenticatedUser = Depends(require(Action.CLOSE, Resource.FINDINGS)),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    from application import CloseFindingUseCase
    return _ok(CloseFindingUseCase().execute(finding_id, uow), message="Finding closed successfully")


@finding_router.post("/{finding_id}/reopen", summary="Reopen a closed finding")
def reopen_finding(
    finding_id: int = Path(..., gt=0),
    _: AuthenticatedUser = Depends(require(Action.REOPEN, Resource.FINDINGS)),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    from application import ReopenFindingUseCase
    return _ok(ReopenFindingUseCase().execute(finding_id, uow), message="Finding reopened successfully")


@finding_router.delete("/{finding_id}", summary="Soft-delete a finding")
def delete_finding(
    finding_id: int = Path(..., gt=0),
    user: AuthenticatedUser = Depends(require(Action.DELETE, Resource.FINDINGS)),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    from application import DeleteFindingUseCase
    DeleteFindingUseCase().execute(SoftDeleteCommand(entity_id=finding_id, acting_user_id=user.id), uow)
    return _ok(message="Finding deleted successfully")


@finding_router.post("/{finding_id}/restore", summary="Restore a soft-deleted finding")
def restore_finding(
    finding_id: int = Path(..., gt=0),
    _: AuthenticatedUser = Depends(require(Action.DELETE, Resource.FINDINGS)),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    from application import RestoreFindingUseCase
    return _ok(RestoreFindingUseCase().execute(finding_id, uow), message="Finding restored successfully")


@finding_router.get("/{finding_id}/evidence", summary="List evidence files")
def list_evidence(
    finding_id: int = Path(..., gt=0),
    _: AuthenticatedUser = Depends(require(Action.VIEW, Resource.FINDINGS)),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    from application import ListEvidenceUseCase
    return _ok(ListEvidenceUseCase().execute(finding_id, uow))


@finding_router.post(
    "/{finding_id}/evidence",
    status_code=status.HTTP_201_CREATED,
    summary="Upload one or more evidence files",
)
def upload_evidence(
    finding_id: int = Path(..., gt=0),
    files: List[UploadFile] = File(...),
    user: AuthenticatedUser = Depends(require(Action.UPLOAD, Resource.FINDINGS)),
    uow: AbstractUnitOfWork = Depends(get_uow),
    file_store: LocalFileStore = Depends(get_file_store),
):
    from application import AddEvidenceUseCase
    cmd = AddAttachmentsCommand(parent_id=finding_id, files=_incoming(files), acting_user_id=user.id)
    return _uploaded(AddEvidenceUseCase(file_store).execute(cmd, uow))


@finding_router.delete("/{finding_id}/evidence/{evidence_id}", summary="Delete an evidence file")
def delete_evidence(
    finding_id: int = Path(..., gt=0),
    evidence_id: int = Path(..., gt=0),
    _: AuthenticatedUser = Depends(require(Action.DELETE, Resource.FINDINGS)),
    uow: AbstractUnitOfWork = Depends(get_uow),
    file_store: LocalFileStore = Depends(get_file_store),
):
    from application import DeleteEvidenceUseCase
    DeleteEvidenceUseCase(file_store).execute(
        DeleteAttachmentCommand(parent_id=finding_id, attachment_id=evidence_id), uow
    )
    return _ok(message="Evidence deleted successfully")


# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------

settings_router = APIRouter(prefix="/settings", tags=["Settings"])


@settings_router.get("", summary="Company profile")
def get_settings(
    _: AuthenticatedUser = Depends(require(Action.VIEW, Resource.SETTINGS)),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    from application import GetSettingsUseCase
    return _ok(GetSettingsUseCase().execute(uow))


@settings_router.put("", summary="Update the company profile")
def update_settings(
    body: UpdateSettingsRequest,
    _: AuthenticatedUser = Depends(require(Action.UPDATE, Resource.SETTINGS)),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    from application import UpdateSettingsUseCase
    changes = _changes(body, "company_name")
    if changes.get("company_email"):
        changes["company_email"] = str(changes["company_email"])
    return _ok(UpdateSettingsUseCase().execute(changes, uow), message="Settings updated successfully")


# ---------------------------------------------------------------------------
# Dashboard
# ---------------------------------------------------------------------------

dashboard_router = APIRouter(prefix="/dashboard", tags=["Dashboard"])


@dashboard_router.get("/stats", summary="Audit and finding counters")
def dashboard_stats(
    filters: AuditFilters = Depends(_audit_filters),
    _: AuthenticatedUser = Depends(require(Action.VIEW, Resource.DASHBOARD)),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    from application import GetDashboardStatsUseCase
    return _ok(GetDashboardStatsUseCase().execute(filters, uow))


@dashboard_router.get("/charts", summary="Chart series for the dashboard")
def dashboard_charts(
    filters: AuditFilters = Depends(_audit_filters),
    _: AuthenticatedUser = Depends(require(Action.VIEW, Resource.DASHBOARD)),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    from application import GetChartDataUseCase
    return _ok(GetChartDataUseCase().execute(filters, uow))


@dashboard_router.get("/findings-trend", summary="Findings per month, vessel and audit type")
def dashboard_findings_trend(
    filters: AuditFilters = Depends(_audit_filters),
    _: AuthenticatedUser = Depends(require(Action.VIEW, Resource.DASHBOARD)),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    from application import GetFindingsTrendUseCase
    return _ok(GetFindingsTrendUseCase().execute(filters, uow))


# ===========================================================================
# REGISTER ROUTERS
# ===========================================================================

api.include_router(auth_router)
api.include_router(user_router)
api.include_router(role_router)
api.include_router(page_router)
api.include_router(permission_router)
api.include_router(vessel_router)
api.include_router(audit_type_router)
api.include_router(audit_party_router)
api.include_router(audit_company_router)
api.include_router(auditor_router)
api.include_router(audit_result_router)
api.include_router(audit_router)
api.include_router(finding_router)
api.include_router(settings_router)
api.include_router(dashboard_router)

app.include_router(api)

# ---------------------------------------------------------------------------
# MCP Server — exposes all API routes as MCP tools
# Accessible at: http://localhost:8000/mcp
# ---------------------------------------------------------------------------
mcp = FastApiMCP(app)
mcp.mount()


# ===========================================================================
# STORED FILES & HEALTH CHECK
# ===========================================================================

@app.get("/uploads/{file_path:path}", tags=["Files"], summary="Download a stored file")
def download_upload(file_path: str, request: Request):
    store: LocalFileStore = request.app.state.file_store
    try:
        target = store.resolve(file_path)
    except ValueError as exc:
        raise NotFoundError("File not found") from exc
    if not target.is_file():
        raise NotFoundError("File not found")
    return FileResponse(target)


@app.get("/health", tags=["Health"], summary="Service health check")
def health():
    return {"status": "ok"}


# ===========================================================================
# OPENAPI CUSTOMISATION — tag order and descriptions
# ===========================================================================

tags_metadata = [
    {"name": "Health", "description": "Liveness probe."},
    {
        "name": "Auth",
        "description": "Log in with e-mail and password to obtain a bearer token.",
    },
    {
        "name": "Users",
        "description": "User administration with soft delete, plus self-service password change.",
    },
    {
        "name": "Roles & Permissions",
        "description": (
            "The Role → Page → Permission matrix.  It is the only source of truth "
            "for authorization; edits take effect on the next request."
        ),
    },
    {"name": "Vessels", "description": "The fleet register.  Vessels referenced by audits cannot be deleted."},
    {
        "name": "Reference Data",
        "description": "Audit types, parties, companies, auditors and results used by audit records.",
    },
    {
        "name": "Audits",
        "description": (
            "Audit records with generated references, report upload, supporting "
            "attachments and auditor assignments."
        ),
    },
    {
        "name": "Findings",
        "description": (
            "Non-conformities and observations raised during an audit.  A finding "
            "past its target date and not closed is Overdue."
        ),
    },
    {"name": "Settings", "description": "Company profile shown on reports."},
    {"name": "Dashboard", "description": "Year-to-date counters and chart series."},
    {"name": "Files", "description": "Download stored uploads."},
]

app.openapi_tags = tags_metadata
