import enum
import uuid

from sqlalchemy import Column, Integer, String, Boolean, DateTime, Float, Enum as SQLEnum, ForeignKey, Text, JSON, UniqueConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from database import Base


def _uuid() -> str:
    return str(uuid.uuid4())


class UserRole(enum.Enum):
    PARTICIPANT = "participant"
    ORGANIZER = "organizer"
    ADMIN = "admin"


class EventMode(enum.Enum):
    OFFLINE = "OFFLINE"
    ONLINE = "ONLINE"
    HYBRID = "HYBRID"


class EventStatus(enum.Enum):
    DRAFT = "DRAFT"
    PUBLISHED = "PUBLISHED"
    ONGOING = "ONGOING"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


class EventVisibility(enum.Enum):
    PUBLIC = "PUBLIC"
    PRIVATE = "PRIVATE"
    UNLISTED = "UNLISTED"


class DiscountType(enum.Enum):
    PERCENTAGE = "percentage"
    FIXED = "fixed"


class RegistrationStatus(enum.Enum):
    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    WAITLISTED = "WAITLISTED"
    CANCELLED = "CANCELLED"


class WaitlistPriority(enum.Enum):
    NORMAL = "normal"
    HIGH = "high"
    VIP = "vip"


class WaitlistSource(enum.Enum):
    WEBSITE = "website"
    REFERRAL = "referral"
    MANUAL = "manual"


class WaitlistStatus(enum.Enum):
    WAITING = "waiting"
    INVITED = "invited"
    PROMOTED = "promoted"
    EXPIRED = "expired"
    REMOVED = "removed"


class WorkspaceType(enum.Enum):
    ROOT = "ROOT"
    DEPARTMENT = "DEPARTMENT"
    COMMITTEE = "COMMITTEE"
    TEAM = "TEAM"


class WorkspaceStatus(enum.Enum):
    PROVISIONING = "PROVISIONING"
    ACTIVE = "ACTIVE"
    WINDING_DOWN = "WINDING_DOWN"
    DISSOLVED = "DISSOLVED"


class WorkspaceRole(enum.Enum):
    WORKSPACE_OWNER = "WORKSPACE_OWNER"
    TEAM_LEAD = "TEAM_LEAD"
    EVENT_COORDINATOR = "EVENT_COORDINATOR"
    VOLUNTEER_MANAGER = "VOLUNTEER_MANAGER"
    TECHNICAL_SPECIALIST = "TECHNICAL_SPECIALIST"
    MARKETING_LEAD = "MARKETING_LEAD"
    GENERAL_VOLUNTEER = "GENERAL_VOLUNTEER"


class MemberStatus(enum.Enum):
    INVITED = "INVITED"
    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"


class AssignmentStatus(enum.Enum):
    PENDING = "pending"
    COMPLETED = "completed"


class User(Base):
    __tablename__ = "users"

    id = Column(String(36), primary_key=True, default=_uuid)
    email = Column(String(255), unique=True, index=True, nullable=False)
    hashed_password = Column(String(255), nullable=False)
    name = Column(String(255), nullable=False)
    phone = Column(String(20), nullable=True)
    role = Column(SQLEnum(UserRole), default=UserRole.PARTICIPANT, nullable=False)
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())


class Event(Base):
    __tablename__ = "events"

    id = Column(String(36), primary_key=True, default=_uuid)
    slug = Column(String(120), unique=True, index=True, nullable=False)
    organizer_id = Column(String(36), ForeignKey("users.id"), nullable=False)
    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    mode = Column(SQLEnum(EventMode), default=EventMode.OFFLINE, nullable=False)
    status = Column(SQLEnum(EventStatus), default=EventStatus.DRAFT, nullable=False)
    visibility = Column(SQLEnum(EventVisibility), default=EventVisibility.PUBLIC, nullable=False)
    venue = Column(String(255), nullable=True)
    start_date = Column(DateTime(timezone=True), nullable=True)
    end_date = Column(DateTime(timezone=True), nullable=True)
    registration_deadline = Column(DateTime(timezone=True), nullable=True)
    capacity = Column(Integer, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    ticket_tiers = relationship("TicketTier", back_populates="event", order_by="TicketTier.sort_order")


class TicketTier(Base):
    __tablename__ = "ticket_tiers"

    id = Column(String(36), primary_key=True, default=_uuid)
    event_id = Column(String(36), ForeignKey("events.id"), nullable=False, index=True)
    name = Column(String(120), nullable=False)
    description = Column(Text, nullable=True)
    price = Column(Float, default=0)
    currency = Column(String(8), default="INR", nullable=False)
    quantity = Column(Integer, nullable=True)  # None means unlimited
    sold_count = Column(Integer, default=0, nullable=False)
    sale_start = Column(DateTime(timezone=True), nullable=True)
    sale_end = Column(DateTime(timezone=True), nullable=True)
    is_active = Column(Boolean, default=True)
    sort_order = Column(Integer, default=0)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    event = relationship("Event", back_populates="ticket_tiers")


class PromoCode(Base):
    __tablename__ = "promo_codes"
    __table_args__ = (UniqueConstraint("event_id", "code", name="uq_promo_codes_event_code"),)

    id = Column(String(36), primary_key=True, default=_uuid)
    event_id = Column(String(36), ForeignKey("events.id"), nullable=False, index=True)
    code = Column(String(50), nullable=False)
    discount_type = Column(SQLEnum(DiscountType), nullable=False)
    discount_value = Column(Float, nullable=False)
    max_quantity = Column(Integer, nullable=True)
    usage_limit = Column(Integer, nullable=True)
    times_used = Column(Integer, default=0, nullable=False)
    ticket_tier_id = Column(String(36), ForeignKey("ticket_tiers.id"), nullable=True)
    valid_from = Column(DateTime(timezone=True), nullable=True)
    valid_until = Column(DateTime(timezone=True), nullable=True)
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class Registration(Base):
    __tablename__ = "registrations"

    id = Column(String(36), primary_key=True, default=_uuid)
    event_id = Column(String(36), ForeignKey("events.id"), nullable=False, index=True)
    user_id = Column(String(36), ForeignKey("users.id"), nullable=True)
    ticket_tier_id = Column(String(36), ForeignKey("ticket_tiers.id"), nullable=True)
    status = Column(SQLEnum(RegistrationStatus), default=RegistrationStatus.PENDING, nullable=False)
    quantity = Column(Integer, default=1, nullable=False)
    subtotal_amount = Column(Float, default=0)
    discount_amount = Column(Float, default=0)
    total_amount = Column(Float, default=0)
    promo_code_id = Column(String(36), ForeignKey("promo_codes.id"), nullable=True)
    form_responses = Column(JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    attendees = relationship("RegistrationAttendee", back_populates="registration")


class RegistrationAttendee(Base):
    __tablename__ = "registration_attendees"

    id = Column(String(36), primary_key=True, default=_uuid)
    registration_id = Column(String(36), ForeignKey("registrations.id"), nullable=False, index=True)
    full_name = Column(String(255), nullable=False)
    email = Column(String(255), nullable=False, index=True)
    phone = Column(String(40), nullable=True)
    ticket_tier_id = Column(String(36), ForeignKey("ticket_tiers.id"), nullable=True)
    is_primary = Column(Boolean, default=False)
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    registration = relationship("Registration", back_populates="attendees")


class AttendanceRecord(Base):
    __tablename__ = "attendance_records"

    id = Column(String(36), primary_key=True, default=_uuid)
    event_id = Column(String(36), ForeignKey("events.id"), nullable=False, index=True)
    registration_id = Column(String(36), ForeignKey("registrations.id"), nullable=False, unique=True)
    user_id = Column(String(36), ForeignKey("users.id"), nullable=True)
    check_in_method = Column(String(20), default="manual", nullable=False)
    check_in_time = Column(DateTime(timezone=True), server_default=func.now())


class WaitlistEntry(Base):
    __tablename__ = "event_waitlist"

    id = Column(String(36), primary_key=True, default=_uuid)
    event_id = Column(String(36), ForeignKey("events.id"), nullable=False, index=True)
    ticket_tier_id = Column(String(36), ForeignKey("ticket_tiers.id"), nullable=True)
    full_name = Column(String(255), nullable=False)
    email = Column(String(255), nullable=False)
    phone = Column(String(40), nullable=True)
    position = Column(Integer, nullable=False)
    priority = Column(SQLEnum(WaitlistPriority), default=WaitlistPriority.NORMAL, nullable=False)
    source = Column(SQLEnum(WaitlistSource), default=WaitlistSource.MANUAL, nullable=False)
    notes = Column(Text, nullable=True)
    status = Column(SQLEnum(WaitlistStatus), default=WaitlistStatus.WAITING, nullable=False)
    invited_at = Column(DateTime(timezone=True), nullable=True)
    promoted_at = Column(DateTime(timezone=True), nullable=True)
    registration_id = Column(String(36), ForeignKey("registrations.id"), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    ticket_tier = relationship("TicketTier")


class Workspace(Base):
    __tablename__ = "workspaces"

    id = Column(String(36), primary_key=True, default=_uuid)
    event_id = Column(String(36), ForeignKey("events.id"), nullable=False, index=True)
    parent_workspace_id = Column(String(36), ForeignKey("workspaces.id"), nullable=True, index=True)
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    workspace_type = Column(SQLEnum(WorkspaceType), nullable=False)
    department_id = Column(String(80), nullable=True)
    status = Column(SQLEnum(WorkspaceStatus), default=WorkspaceStatus.PROVISIONING, nullable=False)
    settings = Column(JSON, nullable=True)
    organizer_id = Column(String(36), ForeignKey("users.id"), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())


class WorkspaceTeamMember(Base):
    __tablename__ = "workspace_team_members"

    id = Column(String(36), primary_key=True, default=_uuid)
    workspace_id = Column(String(36), ForeignKey("workspaces.id"), nullable=False, index=True)
    user_id = Column(String(36), ForeignKey("users.id"), nullable=False)
    role = Column(SQLEnum(WorkspaceRole), nullable=False)
    status = Column(SQLEnum(MemberStatus), default=MemberStatus.INVITED, nullable=False)
    invited_by = Column(String(36), ForeignKey("users.id"), nullable=True)
    joined_at = Column(DateTime(timezone=True), server_default=func.now())


class Rubric(Base):
    __tablename__ = "rubrics"

    id = Column(String(36), primary_key=True, default=_uuid)
    event_id = Column(String(36), ForeignKey("events.id"), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    criteria = Column(JSON, nullable=True)  # [{"name": "Innovation", "max_score": 25}, ...]
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class Submission(Base):
    __tablename__ = "submissions"

    id = Column(String(36), primary_key=True, default=_uuid)
    event_id = Column(String(36), ForeignKey("events.id"), nullable=False, index=True)
    rubric_id = Column(String(36), ForeignKey("rubrics.id"), nullable=True)
    team_name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    project_url = Column(String(500), nullable=True)
    submitted_by = Column(String(36), ForeignKey("users.id"), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class JudgeAssignment(Base):
    __tablename__ = "judge_assignments"
    __table_args__ = (UniqueConstraint("submission_id", "judge_id", name="uq_judge_assignments_submission_judge"),)

    id = Column(String(36), primary_key=True, default=_uuid)
    submission_id = Column(String(36), ForeignKey("submissions.id"), nullable=False, index=True)
    judge_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    status = Column(SQLEnum(AssignmentStatus), default=AssignmentStatus.PENDING, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class Score(Base):
    __tablename__ = "scores"
    __table_args__ = (UniqueConstraint("submission_id", "judge_id", name="uq_scores_submission_judge"),)

    id = Column(String(36), primary_key=True, default=_uuid)
    submission_id = Column(String(36), ForeignKey("submissions.id"), nullable=False, index=True)
    judge_id = Column(String(36), ForeignKey("users.id"), nullable=False)
    scores = Column(JSON, nullable=True)  # {"Innovation": 20, "Execution": 18, ...}
    comments = Column(Text, nullable=True)
    submitted_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())


class Material(Base):
    __tablename__ = "materials"

    id = Column(String(36), primary_key=True, default=_uuid)
    event_id = Column(String(36), ForeignKey("events.id"), nullable=False, index=True)
    workspace_id = Column(String(36), ForeignKey("workspaces.id"), nullable=True)
    title = Column(String(255), nullable=False)
    file_url = Column(String(500), nullable=False)
    download_count = Column(Integer, default=0, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class MaterialDownload(Base):
    __tablename__ = "material_downloads"

    id = Column(String(36), primary_key=True, default=_uuid)
    material_id = Column(String(36), ForeignKey("materials.id"), nullable=False, index=True)
    user_id = Column(String(36), ForeignKey("users.id"), nullable=False)
    event_id = Column(String(36), ForeignKey("events.id"), nullable=True)
    workspace_id = Column(String(36), ForeignKey("workspaces.id"), nullable=True)
    user_agent = Column(String(500), nullable=True)
    ip_address = Column(String(64), nullable=True)
    downloaded_at = Column(DateTime(timezone=True), server_default=func.now())


class ActivityLog(Base):
    __tablename__ = "activity_logs"

    id = Column(Integer, primary_key=True, index=True)
    actor_id = Column(String(36), nullable=True)
    actor_email = Column(String(255), nullable=False)
    event_id = Column(String(36), nullable=True, index=True)
    action = Column(String(255), nullable=False)
    method = Column(String(10), nullable=True)
    path = Column(String(255), nullable=True)
    meta = Column(JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class SystemConfig(Base):
    __tablename__ = "system_config"

    id = Column(Integer, primary_key=True, index=True)
    key = Column(String(100), unique=True, nullable=False)
    value = Column(String(500), nullable=False)
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())
