# models.py - Database models for Workboard
# - UUID string primary keys everywhere
# - Workspace-scoped roles (owner_admin, employee, customer)
# - Soft deletes (is_active) for boards, groups and tasks
# - Ordered sibling sets with a unique (parent, position) constraint

import uuid
from datetime import datetime, timezone
from enum import Enum as PyEnum
from sqlalchemy import (
    Column, String, DateTime, JSON, Boolean, Integer,
    Enum as SQLEnum, ForeignKey, Text, Index, UniqueConstraint,
)
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()


def utcnow():
    return datetime.now(timezone.utc)


def new_uuid():
    return str(uuid.uuid4())


# ============================================================
# ENUMS
# ============================================================

class MemberRole(str, PyEnum):
    OWNER_ADMIN = "OWNER_ADMIN"
    EMPLOYEE = "EMPLOYEE"
    CUSTOMER = "CUSTOMER"


# Roles that bypass board-level membership inside their workspace
STAFF_ROLES = frozenset({MemberRole.OWNER_ADMIN, MemberRole.EMPLOYEE})


class Currency(str, PyEnum):
    USD = "USD"
    ILS = "ILS"
    EUR = "EUR"
    GBP = "GBP"


class BoardType(str, PyEnum):
    GENERAL = "GENERAL"
    PROPERTY = "PROPERTY"
    PROJECT = "PROJECT"
    CRM = "CRM"


class FieldType(str, PyEnum):
    TEXT = "TEXT"
    NUMBER = "NUMBER"
    STATUS = "STATUS"
    DATE = "DATE"
    PERSON = "PERSON"
    MONEY = "MONEY"
    EMAIL = "EMAIL"
    PHONE = "PHONE"
    CHECKBOX = "CHECKBOX"
    LINK = "LINK"


class NotificationType(str, PyEnum):
    TASK_ASSIGNED = "TASK_ASSIGNED"
    TASK_COMMENT = "TASK_COMMENT"
    BOARD_SHARED = "BOARD_SHARED"
    WORKSPACE_ADDED = "WORKSPACE_ADDED"


# ============================================================
# IDENTITY
# ============================================================

class User(Base):
    __tablename__ = "users"

    id = Column(String, primary_key=True, default=new_uuid)
    email = Column(String, unique=True, nullable=False, index=True)
    name = Column(String, nullable=False, default="")
    avatar_url = Column(String, nullable=True)
    password_hash = Column(String, nullable=False)
    role = Column(SQLEnum(MemberRole), default=MemberRole.CUSTOMER, nullable=False)  # platform default role
    is_active = Column(Boolean, default=True, index=True)
    last_login_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    memberships = relationship("WorkspaceMember", back_populates="user")


class RevokedToken(Base):
    __tablename__ = "revoked_tokens"

    id = Column(String, primary_key=True, default=new_uuid)
    jti = Column(String, unique=True, nullable=False, index=True)
    user_id = Column(String, ForeignKey("users.id"), nullable=False)
    revoked_at = Column(DateTime(timezone=True), default=utcnow)
    expires_at = Column(DateTime(timezone=True), nullable=False)


# ============================================================
# WORKSPACES
# ============================================================

class Workspace(Base):
    """Root tenant boundary"""
    __tablename__ = "workspaces"

    id = Column(String, primary_key=True, default=new_uuid)
    name = Column(String, nullable=False)
    slug = Column(String, unique=True, nullable=False, index=True)
    description = Column(Text, nullable=True)
    default_currency = Column(SQLEnum(Currency), default=Currency.USD, nullable=False)
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    members = relationship("WorkspaceMember", back_populates="workspace")
    boards = relationship("Board", back_populates="workspace")


class WorkspaceMember(Base):
    __tablename__ = "workspace_members"

    id = Column(String, primary_key=True, default=new_uuid)
    workspace_id = Column(String, ForeignKey("workspaces.id", ondelete="CASCADE"), nullable=False)
    user_id = Column(String, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    role = Column(SQLEnum(MemberRole), nullable=False, default=MemberRole.CUSTOMER)
    is_active = Column(Boolean, default=True, nullable=False)  # deactivated, never deleted
    joined_at = Column(DateTime(timezone=True), default=utcnow)

    workspace = relationship("Workspace", back_populates="members")
    user = relationship("User", back_populates="memberships")

    __table_args__ = (
        UniqueConstraint("workspace_id", "user_id", name="uq_workspace_member"),
        Index("idx_wsm_user_active", "user_id", "is_active"),
    )


# ============================================================
# BOARDS
# ============================================================

class Board(Base):
    __tablename__ = "boards"

    id = Column(String, primary_key=True, default=new_uuid)
    workspace_id = Column(String, ForeignKey("workspaces.id", ondelete="CASCADE"), nullable=False, index=True)
    created_by_id = Column(String, ForeignKey("users.id"), nullable=False)
    name = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    color = Column(String, nullable=True)
    board_type = Column(SQLEnum(BoardType), default=BoardType.GENERAL, nullable=False)
    is_public = Column(Boolean, default=False, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    workspace = relationship("Workspace", back_populates="boards")
    members = relationship("BoardMember", back_populates="board", cascade="all, delete-orphan")
    columns = relationship("BoardColumn", back_populates="board", order_by="BoardColumn.position")
    groups = relationship("Group", back_populates="board", order_by="Group.position")

    __table_args__ = (
        Index("idx_board_ws_active", "workspace_id", "is_active"),
    )


class BoardMember(Base):
    """Board-level grant; only consulted for CUSTOMER actors"""
    __tablename__ = "board_members"

    id = Column(String, primary_key=True, default=new_uuid)
    board_id = Column(String, ForeignKey("boards.id", ondelete="CASCADE"), nullable=False)
    user_id = Column(String, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    can_edit = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow)

    board = relationship("Board", back_populates="members")

    __table_args__ = (
        UniqueConstraint("board_id", "user_id", name="uq_board_member"),
    )


class Group(Base):
    """Ordered bucket of tasks within a board"""
    __tablename__ = "groups"

    id = Column(String, primary_key=True, default=new_uuid)
    board_id = Column(String, ForeignKey("boards.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String, nullable=False)
    color = Column(String, nullable=True)
    collapsed = Column(Boolean, default=False)
    position = Column(Integer, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow)

    board = relationship("Board", back_populates="groups")
    tasks = relationship("Task", back_populates="group", order_by="Task.position")

    __table_args__ = (
        UniqueConstraint("board_id", "position", name="uq_group_position"),
    )


class BoardColumn(Base):
    """Typed field definition applied to every task on the board"""
    __tablename__ = "columns"

    id = Column(String, primary_key=True, default=new_uuid)
    board_id = Column(String, ForeignKey("boards.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String, nullable=False)
    field_type = Column(SQLEnum(FieldType), nullable=False, default=FieldType.TEXT)
    settings = Column(JSON, nullable=True)  # e.g. status options
    width = Column(Integer, nullable=True)
    is_visible = Column(Boolean, default=True)
    is_required = Column(Boolean, default=False)
    position = Column(Integer, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow)

    board = relationship("Board", back_populates="columns")
    values = relationship("TaskFieldValue", back_populates="column", cascade="all, delete-orphan")

    __table_args__ = (
        UniqueConstraint("board_id", "position", name="uq_column_position"),
    )


# ============================================================
# TASKS
# ============================================================

class Task(Base):
    __tablename__ = "tasks"

    id = Column(String, primary_key=True, default=new_uuid)
    group_id = Column(String, ForeignKey("groups.id", ondelete="CASCADE"), nullable=False, index=True)
    created_by_id = Column(String, ForeignKey("users.id"), nullable=False)
    name = Column(String, nullable=False)
    position = Column(Integer, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    group = relationship("Group", back_populates="tasks")
    sub_tasks = relationship("SubTask", back_populates="task", order_by="SubTask.position",
                             cascade="all, delete-orphan")
    field_values = relationship("TaskFieldValue", back_populates="task", cascade="all, delete-orphan")
    assignments = relationship("TaskAssignment", back_populates="task", cascade="all, delete-orphan")
    comments = relationship("Comment", back_populates="task", order_by="Comment.created_at.desc()",
                            cascade="all, delete-orphan")

    __table_args__ = (
        UniqueConstraint("group_id", "position", name="uq_task_position"),
    )


class SubTask(Base):
    __tablename__ = "sub_tasks"

    id = Column(String, primary_key=True, default=new_uuid)
    task_id = Column(String, ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String, nullable=False)
    is_completed = Column(Boolean, default=False)
    position = Column(Integer, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow)

    task = relationship("Task", back_populates="sub_tasks")

    __table_args__ = (
        UniqueConstraint("task_id", "position", name="uq_subtask_position"),
    )


class TaskFieldValue(Base):
    __tablename__ = "task_field_values"

    id = Column(String, primary_key=True, default=new_uuid)
    task_id = Column(String, ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False)
    column_id = Column(String, ForeignKey("columns.id", ondelete="CASCADE"), nullable=False, index=True)
    value = Column(JSON, nullable=True)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    task = relationship("Task", back_populates="field_values")
    column = relationship("BoardColumn", back_populates="values")

    __table_args__ = (
        UniqueConstraint("task_id", "column_id", name="uq_task_field"),
    )


class TaskAssignment(Base):
    __tablename__ = "task_assignments"

    id = Column(String, primary_key=True, default=new_uuid)
    task_id = Column(String, ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False)
    user_id = Column(String, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    assigned_at = Column(DateTime(timezone=True), default=utcnow)

    task = relationship("Task", back_populates="assignments")
    user = relationship("User")

    __table_args__ = (
        UniqueConstraint("task_id", "user_id", name="uq_task_assignment"),
    )


class Comment(Base):
    __tablename__ = "comments"

    id = Column(String, primary_key=True, default=new_uuid)
    task_id = Column(String, ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(String, ForeignKey("users.id"), nullable=False)
    content = Column(Text, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow)

    task = relationship("Task", back_populates="comments")
    user = relationship("User")


# ============================================================
# SIDE CHANNELS (activity log, notifications)
# ============================================================

class ActivityLog(Base):
    """Append-only record of board mutations"""
    __tablename__ = "activity_logs"

    id = Column(String, primary_key=True, default=new_uuid)
    board_id = Column(String, ForeignKey("boards.id", ondelete="CASCADE"), nullable=False)
    task_id = Column(String, ForeignKey("tasks.id", ondelete="CASCADE"), nullable=True, index=True)
    entity_type = Column(String, nullable=False)  # "board", "group", "column", "task", "subtask"
    entity_id = Column(String, nullable=False)
    user_id = Column(String, ForeignKey("users.id"), nullable=False)
    action = Column(String, nullable=False)  # "created", "moved", "reordered", ...
    details = Column(JSON, default=dict)
    created_at = Column(DateTime(timezone=True), default=utcnow)

    user = relationship("User")

    __table_args__ = (
        Index("idx_activity_board_time", "board_id", "created_at"),
    )


class Notification(Base):
    __tablename__ = "notifications"

    id = Column(String, primary_key=True, default=new_uuid)
    user_id = Column(String, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    notification_type = Column(SQLEnum(NotificationType), nullable=False)
    title = Column(String, nullable=False)
    message = Column(Text, nullable=False)
    link = Column(String, nullable=True)
    read_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, index=True)

    __table_args__ = (
        Index("idx_notif_user_read", "user_id", "read_at"),
    )
