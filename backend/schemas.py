from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator, model_validator
from typing import Optional, List, Dict, Any
from enum import Enum
from datetime import datetime
from urllib.parse import urlparse


def _enum_value(value):
    return value.value if isinstance(value, Enum) else value


def _normalize_optional_http_url(value: Optional[str], field_name: str, max_length: int = 500) -> Optional[str]:
    raw = str(value or "").strip()
    if not raw:
        return None
    if len(raw) > max_length:
        raise ValueError(f"{field_name} must be at most {max_length} characters")
    parsed = urlparse(raw)
    if parsed.scheme.lower() not in {"http", "https"} or not parsed.netloc:
        raise ValueError(f"{field_name} must be a valid http/https URL")
    return raw


class UserRoleEnum(str, Enum):
    PARTICIPANT = "participant"
    ORGANIZER = "organizer"
    ADMIN = "admin"


class EventModeEnum(str, Enum):
    OFFLINE = "OFFLINE"
    ONLINE = "ONLINE"
    HYBRID = "HYBRID"


class EventStatusEnum(str, Enum):
    DRAFT = "DRAFT"
    PUBLISHED = "PUBLISHED"
    ONGOING = "ONGOING"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


class EventVisibilityEnum(str, Enum):
    PUBLIC = "PUBLIC"
    PRIVATE = "PRIVATE"
    UNLISTED = "UNLISTED"


class DiscountTypeEnum(str, Enum):
    PERCENTAGE = "percentage"
    FIXED = "fixed"


class RegistrationStatusEnum(str, Enum):
    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    WAITLISTED = "WAITLISTED"
    CANCELLED = "CANCELLED"


class WaitlistPriorityEnum(str, Enum):
    NORMAL = "normal"
    HIGH = "high"
    VIP = "vip"


class WaitlistSourceEnum(str, Enum):
    WEBSITE = "website"
    REFERRAL = "referral"
    MANUAL = "manual"


class WaitlistStatusEnum(str, Enum):
    WAITING = "waiting"
    INVITED = "invited"
    PROMOTED = "promoted"
    EXPIRED = "expired"
    REMOVED = "removed"


class WorkspaceTypeEnum(str, Enum):
    ROOT = "ROOT"
    DEPARTMENT = "DEPARTMENT"
    COMMITTEE = "COMMITTEE"
    TEAM = "TEAM"


class WorkspaceStatusEnum(str, Enum):
    PROVISIONING = "PROVISIONING"
    ACTIVE = "ACTIVE"
    WINDING_DOWN = "WINDING_DOWN"
    DISSOLVED = "DISSOLVED"


class WorkspaceRoleEnum(str, Enum):
    WORKSPACE_OWNER = "WORKSPACE_OWNER"
    TEAM_LEAD = "TEAM_LEAD"
    EVENT_COORDINATOR = "EVENT_COORDINATOR"
    VOLUNTEER_MANAGER = "VOLUNTEER_MANAGER"
    TECHNICAL_SPECIALIST = "TECHNICAL_SPECIALIST"
    MARKETING_LEAD = "MARKETING_LEAD"
    GENERAL_VOLUNTEER = "GENERAL_VOLUNTEER"


class MemberStatusEnum(str, Enum):
    INVITED = "INVITED"
    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"


class AssignmentStatusEnum(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"


# Auth Schemas
class UserRegister(BaseModel):
    name: str = Field(..., min_length=2, max_length=255)
    email: EmailStr
    password: str = Field(..., min_length=8)
    phone: Optional[str] = Field(None, max_length=20)
    role: UserRoleEnum = UserRoleEnum.PARTICIPANT

    @field_validator("role")
    @classmethod
    def validate_role(cls, v):
        if v == UserRoleEnum.ADMIN:
            raise ValueError("Admin accounts cannot be self-registered")
        return v


class UserLogin(BaseModel):
    email: EmailStr
    password: str


class RefreshTokenRequest(BaseModel):
    refresh_token: str


class UserResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    email: str
    name: str
    phone: Optional[str] = None
    role: UserRoleEnum
    created_at: Optional[datetime] = None

    @field_validator("role", mode="before")
    @classmethod
    def unwrap_role(cls, v):
        return _enum_value(v)


class TokenResponse(BaseModel):
    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    user: UserResponse


# Event Schemas
class EventCreate(BaseModel):
    title: str = Field(..., min_length=2, max_length=255)
    description: Optional[str] = None
    mode: EventModeEnum = EventModeEnum.OFFLINE
    visibility: EventVisibilityEnum = EventVisibilityEnum.PUBLIC
    venue: Optional[str] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    registration_deadline: Optional[datetime] = None
    capacity: Optional[int] = Field(None, ge=1)


class EventUpdate(BaseModel):
    title: Optional[str] = Field(None, min_length=2, max_length=255)
    description: Optional[str] = None
    mode: Optional[EventModeEnum] = None
    status: Optional[EventStatusEnum] = None
    visibility: Optional[EventVisibilityEnum] = None
    venue: Optional[str] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    registration_deadline: Optional[datetime] = None
    capacity: Optional[int] = Field(None, ge=1)


class EventResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    slug: str
    organizer_id: str
    title: str
    description: Optional[str] = None
    mode: EventModeEnum
    status: EventStatusEnum
    visibility: EventVisibilityEnum
    venue: Optional[str] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    registration_deadline: Optional[datetime] = None
    capacity: Optional[int] = None
    created_at: Optional[datetime] = None

    @field_validator("mode", "status", "visibility", mode="before")
    @classmethod
    def unwrap_enums(cls, v):
        return _enum_value(v)


class TicketTierCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=120)
    description: Optional[str] = None
    price: float = Field(0, ge=0)
    currency: str = Field("INR", min_length=3, max_length=8)
    quantity: Optional[int] = Field(None, ge=0)
    sale_start: Optional[datetime] = None
    sale_end: Optional[datetime] = None
    is_active: bool = True
    sort_order: int = 0


class TicketTierUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=120)
    description: Optional[str] = None
    price: Optional[float] = Field(None, ge=0)
    currency: Optional[str] = Field(None, min_length=3, max_length=8)
    quantity: Optional[int] = Field(None, ge=0)
    sale_start: Optional[datetime] = None
    sale_end: Optional[datetime] = None
    is_active: Optional[bool] = None
    sort_order: Optional[int] = None


class TicketTierResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    event_id: str
    name: str
    description: Optional[str] = None
    price: float
    currency: str
    quantity: Optional[int] = None
    sold_count: int
    sale_start: Optional[datetime] = None
    sale_end: Optional[datetime] = None
    is_active: bool
    sort_order: int
    sale_status: Optional[str] = None
    available: Optional[int] = None


class PromoCodeCreate(BaseModel):
    code: str = Field(..., min_length=3, max_length=50)
    discount_type: DiscountTypeEnum
    discount_value: float = Field(..., gt=0)
    max_quantity: Optional[int] = Field(None, ge=1)
    usage_limit: Optional[int] = Field(None, ge=1)
    ticket_tier_id: Optional[str] = None
    valid_from: Optional[datetime] = None
    valid_until: Optional[datetime] = None
    is_active: bool = True

    @field_validator("code")
    @classmethod
    def normalize_code(cls, v):
        return v.strip().upper()

    @model_validator(mode="after")
    def validate_percentage(self):
        if self.discount_type == DiscountTypeEnum.PERCENTAGE and self.discount_value > 100:
            raise ValueError("Percentage discount cannot exceed 100")
        return self


class PromoCodeUpdate(BaseModel):
    discount_value: Optional[float] = Field(None, gt=0)
    max_quantity: Optional[int] = Field(None, ge=1)
    usage_limit: Optional[int] = Field(None, ge=1)
    valid_from: Optional[datetime] = None
    valid_until: Optional[datetime] = None
    is_active: Optional[bool] = None


class PromoCodeResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    event_id: str
    code: str
    discount_type: DiscountTypeEnum
    discount_value: float
    max_quantity: Optional[int] = None
    usage_limit: Optional[int] = None
    times_used: int
    ticket_tier_id: Optional[str] = None
    valid_from: Optional[datetime] = None
    valid_until: Optional[datetime] = None
    is_active: bool

    @field_validator("discount_type", mode="before")
    @classmethod
    def unwrap_discount_type(cls, v):
        return _enum_value(v)


class PriceQuoteRequest(BaseModel):
    ticket_tier_id: str
    quantity: int = Field(1, ge=1, le=50)
    promo_code: Optional[str] = None


class PriceQuoteResponse(BaseModel):
    subtotal: float
    discount: float
    total: float
    currency: str
    promo_code_id: Optional[str] = None


# Registration Schemas
class RegistrationCreate(BaseModel):
    ticket_tier_id: str
    quantity: int = Field(1, ge=1, le=50)
    promo_code: Optional[str] = None
    full_name: Optional[str] = Field(None, min_length=2, max_length=255)
    phone: Optional[str] = Field(None, max_length=40)
    form_responses: Optional[Dict[str, Any]] = None


class AttendeeResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    registration_id: str
    full_name: str
    email: str
    phone: Optional[str] = None
    ticket_tier_id: Optional[str] = None
    is_primary: bool
    notes: Optional[str] = None


class RegistrationResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    event_id: str
    user_id: Optional[str] = None
    ticket_tier_id: Optional[str] = None
    status: RegistrationStatusEnum
    quantity: int
    subtotal_amount: float
    discount_amount: float
    total_amount: float
    promo_code_id: Optional[str] = None
    form_responses: Optional[Dict[str, Any]] = None
    created_at: Optional[datetime] = None
    attendees: List[AttendeeResponse] = Field(default_factory=list)
    checked_in: bool = False

    @field_validator("status", mode="before")
    @classmethod
    def unwrap_status(cls, v):
        return _enum_value(v)


class WaitlistedRegistrationResponse(BaseModel):
    status: RegistrationStatusEnum = RegistrationStatusEnum.WAITLISTED
    waitlist_entry_id: str
    position: int
    message: str = "Ticket type is sold out; you have been added to the waitlist"


class ConfigFlagUpdate(BaseModel):
    value: bool


class CheckInRequest(BaseModel):
    method: str = Field("manual", pattern="^(manual|qr)$")


class RegistrationStatsResponse(BaseModel):
    total_registered: int
    confirmed: int
    checked_in: int
    pending: int
    waitlisted: int
    cancelled: int
    capacity_limit: int
    registration_trend: int
    check_in_rate: float
    available_spots: int


class ManualAttendeeCreate(BaseModel):
    full_name: str = Field(..., min_length=2, max_length=255)
    email: EmailStr
    phone: Optional[str] = Field(None, max_length=40)
    ticket_tier_id: str
    promo_code: Optional[str] = None
    notes: Optional[str] = None
    send_confirmation: bool = True


class BulkInvitationRequest(BaseModel):
    emails: List[str] = Field(..., min_length=1)
    ticket_tier_id: str


class BulkInvitationResponse(BaseModel):
    sent: int
    failed: int
    failures: List[Dict[str, str]] = Field(default_factory=list)


# Waitlist Schemas
class WaitlistEntryCreate(BaseModel):
    full_name: str = Field(..., min_length=2, max_length=255)
    email: EmailStr
    phone: Optional[str] = Field(None, max_length=40)
    ticket_tier_id: Optional[str] = None
    priority: WaitlistPriorityEnum = WaitlistPriorityEnum.NORMAL
    notes: Optional[str] = None


class WaitlistEntryResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    event_id: str
    ticket_tier_id: Optional[str] = None
    ticket_tier_name: Optional[str] = None
    full_name: str
    email: str
    phone: Optional[str] = None
    position: int
    priority: WaitlistPriorityEnum
    source: WaitlistSourceEnum
    notes: Optional[str] = None
    status: WaitlistStatusEnum
    invited_at: Optional[datetime] = None
    promoted_at: Optional[datetime] = None
    registration_id: Optional[str] = None
    created_at: Optional[datetime] = None

    @field_validator("priority", "source", "status", mode="before")
    @classmethod
    def unwrap_enums(cls, v):
        return _enum_value(v)


class WaitlistMoveRequest(BaseModel):
    new_position: int = Field(..., ge=1)


class WaitlistBulkPromoteRequest(BaseModel):
    entry_ids: List[str] = Field(..., min_length=1)


class WaitlistStatsResponse(BaseModel):
    total_waiting: int
    priority_count: int
    avg_wait_days: float
    invited_today: int


class TicketAvailabilityResponse(BaseModel):
    tier_id: str
    tier_name: str
    available: int
    waitlisted: int


# Judging Schemas
class RubricCriterion(BaseModel):
    name: str = Field(..., min_length=1, max_length=120)
    max_score: Optional[float] = Field(None, gt=0)
    weight: Optional[float] = Field(None, gt=0)
    description: Optional[str] = None


class RubricCreate(BaseModel):
    name: str = Field(..., min_length=2, max_length=255)
    criteria: List[RubricCriterion] = Field(..., min_length=1)

    @field_validator("criteria")
    @classmethod
    def unique_criteria(cls, v):
        names = [c.name.strip().lower() for c in v]
        if len(names) != len(set(names)):
            raise ValueError("Criteria names must be unique")
        return v


class RubricResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    event_id: str
    name: str
    criteria: List[Dict[str, Any]] = Field(default_factory=list)
    max_possible_score: Optional[float] = None


class SubmissionCreate(BaseModel):
    team_name: str = Field(..., min_length=1, max_length=255)
    rubric_id: Optional[str] = None
    description: Optional[str] = None
    project_url: Optional[str] = None

    @field_validator("project_url", mode="before")
    @classmethod
    def validate_project_url(cls, value):
        return _normalize_optional_http_url(value, "project_url")


class SubmissionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    event_id: str
    rubric_id: Optional[str] = None
    team_name: str
    description: Optional[str] = None
    project_url: Optional[str] = None
    submitted_by: Optional[str] = None
    created_at: Optional[datetime] = None


class JudgeAssignmentCreate(BaseModel):
    judge_ids: List[str] = Field(..., min_length=1)


class JudgeAssignmentResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    submission_id: str
    judge_id: str
    status: AssignmentStatusEnum
    created_at: Optional[datetime] = None

    @field_validator("status", mode="before")
    @classmethod
    def unwrap_status(cls, v):
        return _enum_value(v)


class ScoreSubmit(BaseModel):
    scores: Dict[str, float] = Field(..., min_length=1)
    comments: Optional[str] = None


class ScoreResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    submission_id: str
    judge_id: str
    scores: Dict[str, float] = Field(default_factory=dict)
    comments: Optional[str] = None
    submitted_at: Optional[datetime] = None


class LeaderboardEntry(BaseModel):
    rank: int
    submission_id: str
    team_name: str
    description: Optional[str] = None
    total_score: float
    judge_count: int
    max_possible_score: float
    score_percentage: float


class JudgingStatsResponse(BaseModel):
    total_submissions: int
    evaluated_submissions: int
    total_judges: int
    active_judges: int
    pending_assignments: int
    average_score: float
    completion_rate: int


# Workspace Schemas
class WorkspaceCreate(BaseModel):
    name: str = Field(..., min_length=2, max_length=255)
    description: Optional[str] = None
    workspace_type: WorkspaceTypeEnum
    department_id: Optional[str] = Field(None, max_length=80)


class WorkspaceResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    event_id: str
    parent_workspace_id: Optional[str] = None
    name: str
    description: Optional[str] = None
    workspace_type: WorkspaceTypeEnum
    department_id: Optional[str] = None
    status: WorkspaceStatusEnum
    settings: Optional[Dict[str, Any]] = None
    created_at: Optional[datetime] = None

    @field_validator("workspace_type", "status", mode="before")
    @classmethod
    def unwrap_enums(cls, v):
        return _enum_value(v)


class WorkspaceTreeNode(BaseModel):
    id: str
    name: str
    workspace_type: WorkspaceTypeEnum
    status: WorkspaceStatusEnum
    children: List["WorkspaceTreeNode"] = Field(default_factory=list)


WorkspaceTreeNode.model_rebuild()


class WorkspaceMemberInvite(BaseModel):
    email: EmailStr
    role: WorkspaceRoleEnum = WorkspaceRoleEnum.GENERAL_VOLUNTEER


class WorkspaceMemberRoleUpdate(BaseModel):
    role: WorkspaceRoleEnum


class WorkspaceMemberResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    workspace_id: str
    user_id: str
    role: WorkspaceRoleEnum
    status: MemberStatusEnum
    invited_by: Optional[str] = None
    joined_at: Optional[datetime] = None

    @field_validator("role", "status", mode="before")
    @classmethod
    def unwrap_enums(cls, v):
        return _enum_value(v)


class WorkspaceDissolveRequest(BaseModel):
    retention_period_days: Optional[int] = Field(None, ge=0, le=365)


# Material Schemas
class MaterialCreate(BaseModel):
    title: str = Field(..., min_length=1, max_length=255)
    file_url: str
    workspace_id: Optional[str] = None

    @field_validator("file_url", mode="before")
    @classmethod
    def validate_file_url(cls, value):
        normalized = _normalize_optional_http_url(value, "file_url")
        if not normalized:
            raise ValueError("file_url is required")
        return normalized


class MaterialResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    event_id: str
    workspace_id: Optional[str] = None
    title: str
    file_url: str
    download_count: int
    created_at: Optional[datetime] = None


class MaterialUploadUrlRequest(BaseModel):
    filename: str = Field(..., min_length=1, max_length=255)
    content_type: str = Field(..., min_length=3, max_length=120)
