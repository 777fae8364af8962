"""SQLAlchemy ORM models for the Ledgerly API.

These models define the relational database schema used by the
application. Status-like fields are stored as strings whose allowed
values live in :mod:`ledgerly.models.enums`. JSON columns use the
built-in JSON type so the schema works on both Postgres and SQLite.
Embeddings are stored as JSON float arrays and compared in Python.

Relationships are declared for convenience, but services load related
rows explicitly because lazy loading is not available on an
``AsyncSession``.

If you extend or modify these models remember to add an alembic
migration or call the ``init_db`` helper during development to
recreate the tables.
"""

from __future__ import annotations

import datetime as dt
import re
from typing import Any, Dict, Optional

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    LargeBinary,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from ledgerly.core.database import Base
from .enums import (
    AnalyticsStatus,
    CategorizationStatus,
    ExecutionStatus,
    GlobalPatternType,
    InvoiceSource,
    InvoiceStatus,
    MatchField,
    MembershipRole,
    PatternType,
    RuleSource,
    StatementStatus,
    StepLogStatus,
    TransactionType,
    WorkflowStatus,
)

# Money columns come back as float; rounding happens at the edges.
Money = Numeric(14, 2, asdecimal=False)


def _utcnow() -> dt.datetime:
    return dt.datetime.utcnow()


class User(Base):
    """User account representing an individual using the service."""

    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String, unique=True, nullable=False)
    name = Column(String, nullable=False)
    settings = Column(JSON, nullable=False, default=dict)
    created_at = Column(DateTime, default=_utcnow, nullable=False)
    updated_at = Column(DateTime, default=_utcnow, onupdate=_utcnow, nullable=False)

    memberships = relationship("WorkspaceMembership", back_populates="user", cascade="all, delete-orphan")


class Workspace(Base):
    """Tenant boundary that owns financial data."""

    __tablename__ = "workspaces"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False)
    workspace_type = Column(String, nullable=False, default="personal")
    owner_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    created_at = Column(DateTime, default=_utcnow, nullable=False)
    updated_at = Column(DateTime, default=_utcnow, onupdate=_utcnow, nullable=False)

    memberships = relationship("WorkspaceMembership", back_populates="workspace", cascade="all, delete-orphan")


class WorkspaceMembership(Base):
    __tablename__ = "workspace_memberships"
    __table_args__ = (UniqueConstraint("workspace_id", "user_id", name="uq_workspace_member"),)

    id = Column(Integer, primary_key=True)
    workspace_id = Column(Integer, ForeignKey("workspaces.id"), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    role = Column(String, nullable=False, default=MembershipRole.MEMBER.value)
    created_at = Column(DateTime, default=_utcnow, nullable=False)

    workspace = relationship("Workspace", back_populates="memberships")
    user = relationship("User", back_populates="memberships")


class Account(Base):
    """A bank account or card belonging to a user."""

    __tablename__ = "accounts"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    workspace_id = Column(Integer, ForeignKey("workspaces.id"), nullable=True, index=True)
    name = Column(String, nullable=False)
    bank_name = Column(String, nullable=False)
    account_number_last4 = Column(String, nullable=True)
    account_type = Column(String, nullable=True)
    currency = Column(String, nullable=False, default="INR")
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, default=_utcnow, nullable=False)
    updated_at = Column(DateTime, default=_utcnow, onupdate=_utcnow, nullable=False)

    @property
    def display_name(self) -> str:
        return f"{self.name} ({self.bank_name} - {self.account_number_last4 or '----'})"


class BankTemplate(Base):
    """How to parse one bank's statement export for one account type and format."""

    __tablename__ = "bank_templates"
    __table_args__ = (
        UniqueConstraint("bank_code", "account_type", "file_format", name="uq_bank_template"),
    )

    id = Column(Integer, primary_key=True, index=True)
    bank_name = Column(String, nullable=False)
    bank_code = Column(String, nullable=False, index=True)
    account_type = Column(String, nullable=False)
    file_format = Column(String, nullable=False)
    parser_class = Column(String, nullable=True)
    description = Column(Text, nullable=True)
    logo_url = Column(String, nullable=True)
    column_mappings = Column(JSON, nullable=False, default=dict)
    parser_config = Column(JSON, nullable=False, default=dict)
    is_active = Column(Boolean, nullable=False, default=True)
    display_order = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime, default=_utcnow, nullable=False)
    updated_at = Column(DateTime, default=_utcnow, onupdate=_utcnow, nullable=False)

    @property
    def display_name(self) -> str:
        account = (self.account_type or "").replace("_", " ").title()
        return f"{self.bank_name} - {account} ({(self.file_format or '').upper()})"


class Statement(Base):
    """An uploaded bank statement file and its parsing state."""

    __tablename__ = "statements"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    workspace_id = Column(Integer, ForeignKey("workspaces.id"), nullable=True, index=True)
    account_id = Column(Integer, ForeignKey("accounts.id"), nullable=True)
    bank_template_id = Column(Integer, ForeignKey("bank_templates.id"), nullable=True)
    file_name = Column(String, nullable=False)
    file_type = Column(String, nullable=False)
    # Raw file bytes; object storage is out of scope for this service.
    content = Column(LargeBinary, nullable=True)
    status = Column(String, nullable=False, default=StatementStatus.PENDING.value, index=True)
    error_message = Column(Text, nullable=True)
    parsed_at = Column(DateTime, nullable=True)
    meta = Column("metadata", JSON, nullable=False, default=dict)
    created_at = Column(DateTime, default=_utcnow, nullable=False)
    updated_at = Column(DateTime, default=_utcnow, onupdate=_utcnow, nullable=False)

    bank_template = relationship("BankTemplate", lazy="joined")

    @property
    def parsing_progress(self) -> Dict[str, Any]:
        progress = (self.meta or {}).get("parsing_progress")
        if progress:
            return progress
        return {"status": self.status, "total": 0, "processed": 0, "percentage": 0}

    @property
    def is_credit_card(self) -> bool:
        return bool(self.bank_template and self.bank_template.account_type == "credit_card")


class StatementAnalytic(Base):
    """Precomputed analytics payload for a parsed statement."""

    __tablename__ = "statement_analytics"

    id = Column(Integer, primary_key=True)
    statement_id = Column(Integer, ForeignKey("statements.id", ondelete="CASCADE"), unique=True, nullable=False)
    status = Column(String, nullable=False, default=AnalyticsStatus.QUEUED.value)
    payload = Column(JSON, nullable=False, default=dict)
    error_message = Column(Text, nullable=True)
    started_at = Column(DateTime, nullable=True)
    computed_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=_utcnow, nullable=False)
    updated_at = Column(DateTime, default=_utcnow, onupdate=_utcnow, nullable=False)


class Category(Base):
    """Spending category; system categories are shared by every user."""

    __tablename__ = "categories"
    __table_args__ = (UniqueConstraint("name", "parent_id", name="uq_category_name_parent"),)

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False)
    slug = Column(String, unique=True, nullable=False, index=True)
    parent_id = Column(Integer, ForeignKey("categories.id"), nullable=True)
    icon = Column(String, nullable=True)
    color = Column(String, nullable=True)
    description = Column(String, nullable=True)
    is_system = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, default=_utcnow, nullable=False)

    subcategories = relationship("Subcategory", back_populates="category", cascade="all, delete-orphan")


class Subcategory(Base):
    __tablename__ = "subcategories"
    __table_args__ = (UniqueConstraint("category_id", "slug", name="uq_subcategory_slug"),)

    id = Column(Integer, primary_key=True, index=True)
    category_id = Column(Integer, ForeignKey("categories.id"), nullable=False, index=True)
    name = Column(String, nullable=False)
    slug = Column(String, nullable=False)
    keywords = Column(JSON, nullable=False, default=list)
    is_default = Column(Boolean, nullable=False, default=False)
    display_order = Column(Integer, nullable=False, default=0)

    category = relationship("Category", back_populates="subcategories")

    def matches_keyword(self, text: Optional[str]) -> bool:
        if not self.keywords or not text:
            return False
        lowered = text.lower()
        return any(str(kw).lower() in lowered for kw in self.keywords)


class Transaction(Base):
    """A single bank transaction, parsed from a statement or entered by hand."""

    __tablename__ = "transactions"
    __table_args__ = (
        Index("ix_transactions_user_date", "user_id", "transaction_date"),
        Index("ix_transactions_user_category", "user_id", "category_id"),
    )

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    workspace_id = Column(Integer, ForeignKey("workspaces.id"), nullable=True, index=True)
    statement_id = Column(Integer, ForeignKey("statements.id", ondelete="CASCADE"), nullable=True, index=True)
    account_id = Column(Integer, ForeignKey("accounts.id"), nullable=True)
    transaction_date = Column(Date, nullable=False)
    description = Column(String, nullable=False)
    original_description = Column(String, nullable=True)
    amount = Column(Money, nullable=False)
    transaction_type = Column(String, nullable=False)
    balance = Column(Money, nullable=True)
    reference = Column(String, nullable=True)
    category_id = Column(Integer, ForeignKey("categories.id"), nullable=True)
    subcategory_id = Column(Integer, ForeignKey("subcategories.id"), nullable=True)
    ai_category_id = Column(Integer, ForeignKey("categories.id"), nullable=True)
    confidence = Column(Float, nullable=True)
    categorization_status = Column(String, nullable=False, default=CategorizationStatus.PENDING.value)
    tx_kind = Column(String, nullable=True)
    counterparty_name = Column(String, nullable=True)
    is_reviewed = Column(Boolean, nullable=False, default=False)
    meta = Column("metadata", JSON, nullable=False, default=dict)
    embedding = Column(JSON(none_as_null=True), nullable=True)
    embedding_generated_at = Column(DateTime, nullable=True)
    invoice_id = Column(Integer, ForeignKey("invoices.id", use_alter=True, name="fk_transactions_invoice"), nullable=True)
    created_at = Column(DateTime, default=_utcnow, nullable=False)
    updated_at = Column(DateTime, default=_utcnow, onupdate=_utcnow, nullable=False)

    category = relationship("Category", foreign_keys=[category_id], lazy="joined")
    ai_category = relationship("Category", foreign_keys=[ai_category_id], lazy="joined")
    subcategory = relationship("Subcategory", lazy="joined")

    def __init__(self, **kwargs: Any):
        description = kwargs.get("description")
        if isinstance(description, str):
            kwargs["description"] = re.sub(r"\s+", " ", description).strip()
        kwargs.setdefault("original_description", kwargs.get("description"))
        kwargs.setdefault("meta", {})
        kwargs.setdefault("is_reviewed", False)
        super().__init__(**kwargs)

    @property
    def is_debit(self) -> bool:
        return self.transaction_type == TransactionType.DEBIT.value

    @property
    def is_credit(self) -> bool:
        return self.transaction_type == TransactionType.CREDIT.value

    @property
    def signed_amount(self) -> float:
        value = abs(float(self.amount or 0))
        return -value if self.is_debit else value

    @property
    def effective_category(self) -> Optional[Category]:
        return self.category or self.ai_category

    @property
    def is_transfer(self) -> bool:
        return bool(self.tx_kind and self.tx_kind.startswith("transfer_"))

    @property
    def is_income(self) -> bool:
        return bool(self.tx_kind and self.tx_kind.startswith("income_"))

    @property
    def confidence_band(self) -> Optional[str]:
        if self.confidence is None:
            return None
        if self.confidence >= 0.8:
            return "high"
        if self.confidence >= 0.5:
            return "medium"
        return "low"


class UserRule(Base):
    """Per-user categorisation rule, created by hand or learned from feedback."""

    __tablename__ = "user_rules"
    __table_args__ = (UniqueConstraint("user_id", "pattern", name="uq_user_rule_pattern"),)

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    workspace_id = Column(Integer, ForeignKey("workspaces.id"), nullable=True)
    category_id = Column(Integer, ForeignKey("categories.id"), nullable=False)
    subcategory_id = Column(Integer, ForeignKey("subcategories.id"), nullable=True)
    pattern = Column(String, nullable=False)
    pattern_type = Column(String, nullable=False, default=PatternType.KEYWORD.value)
    match_field = Column(String, nullable=False, default=MatchField.DESCRIPTION.value)
    amount_min = Column(Money, nullable=True)
    amount_max = Column(Money, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    priority = Column(Integer, nullable=False, default=0)
    match_count = Column(Integer, nullable=False, default=0)
    last_matched_at = Column(DateTime, nullable=True)
    source_transaction_id = Column(Integer, ForeignKey("transactions.id", ondelete="SET NULL"), nullable=True)
    source = Column(String, nullable=False, default=RuleSource.MANUAL.value)
    created_at = Column(DateTime, default=_utcnow, nullable=False)
    updated_at = Column(DateTime, default=_utcnow, onupdate=_utcnow, nullable=False)

    category = relationship("Category", lazy="joined")


class LabeledExample(Base):
    """A user-confirmed description to category pairing."""

    __tablename__ = "labeled_examples"
    __table_args__ = (
        UniqueConstraint("user_id", "normalized_description", name="uq_labeled_example_user_desc"),
    )

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    category_id = Column(Integer, ForeignKey("categories.id"), nullable=False)
    subcategory_id = Column(Integer, ForeignKey("subcategories.id"), nullable=True)
    transaction_id = Column(Integer, ForeignKey("transactions.id", ondelete="SET NULL"), nullable=True)
    description = Column(Text, nullable=False)
    normalized_description = Column(String, nullable=True)
    tx_kind = Column(String, nullable=True)
    source = Column(String, nullable=False, default="user_feedback")
    amount = Column(Money, nullable=True)
    transaction_type = Column(String, nullable=True)
    embedding = Column(JSON(none_as_null=True), nullable=True)
    created_at = Column(DateTime, default=_utcnow, nullable=False)
    updated_at = Column(DateTime, default=_utcnow, onupdate=_utcnow, nullable=False)

    category = relationship("Category", lazy="joined")


class GlobalPattern(Base):
    """A pattern learned across all users.

    Once enough users agree on a category for the same pattern it becomes
    verified and is used for everyone.
    """

    __tablename__ = "global_patterns"
    __table_args__ = (UniqueConstraint("pattern", "category_id", name="uq_global_pattern_category"),)

    id = Column(Integer, primary_key=True, index=True)
    pattern = Column(String, nullable=False, index=True)
    pattern_type = Column(String, nullable=False, default=GlobalPatternType.KEYWORD.value)
    category_id = Column(Integer, ForeignKey("categories.id"), nullable=False)
    occurrence_count = Column(Integer, nullable=False, default=1)
    user_count = Column(Integer, nullable=False, default=1)
    agreement_count = Column(Integer, nullable=False, default=1)
    is_verified = Column(Boolean, nullable=False, default=False)
    verified_at = Column(DateTime, nullable=True)
    match_count = Column(Integer, nullable=False, default=0)
    last_matched_at = Column(DateTime, nullable=True)
    source = Column(String, nullable=False, default=RuleSource.LLM_AUTO.value)
    user_ids = Column(JSON, nullable=False, default=list)
    created_at = Column(DateTime, default=_utcnow, nullable=False)
    updated_at = Column(DateTime, default=_utcnow, onupdate=_utcnow, nullable=False)

    category = relationship("Category", lazy="joined")


class Invoice(Base):
    """A vendor invoice that may be reconciled against a bank debit."""

    __tablename__ = "invoices"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    workspace_id = Column(Integer, ForeignKey("workspaces.id"), nullable=True)
    account_id = Column(Integer, ForeignKey("accounts.id"), nullable=True)
    source = Column(String, nullable=False, default=InvoiceSource.UPLOAD.value)
    status = Column(String, nullable=False, default=InvoiceStatus.PENDING.value, index=True)
    file_name = Column(String, nullable=True)
    gmail_message_id = Column(String, nullable=True)
    vendor_name = Column(String, nullable=True)
    vendor_gstin = Column(String, nullable=True)
    invoice_number = Column(String, nullable=True)
    invoice_date = Column(Date, nullable=True)
    total_amount = Column(Money, nullable=True)
    currency = Column(String, nullable=True, default="INR")
    extracted_data = Column(JSON, nullable=False, default=dict)
    extraction_method = Column(String, nullable=True)
    extraction_confidence = Column(Float, nullable=True)
    matched_transaction_id = Column(
        Integer, ForeignKey("transactions.id", ondelete="SET NULL"), nullable=True
    )
    match_confidence = Column(Float, nullable=True)
    matched_at = Column(DateTime, nullable=True)
    matched_by = Column(String, nullable=True)
    created_at = Column(DateTime, default=_utcnow, nullable=False)
    updated_at = Column(DateTime, default=_utcnow, onupdate=_utcnow, nullable=False)

    @property
    def can_match(self) -> bool:
        return self.status == InvoiceStatus.EXTRACTED.value and self.total_amount is not None


class Workflow(Base):
    """A user-defined automation: a trigger plus ordered steps."""

    __tablename__ = "workflows"
    __table_args__ = (Index("ix_workflows_workspace_status", "workspace_id", "status"),)

    id = Column(Integer, primary_key=True, index=True)
    workspace_id = Column(Integer, ForeignKey("workspaces.id"), nullable=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    name = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    status = Column(String, nullable=False, default=WorkflowStatus.DRAFT.value)
    trigger_type = Column(String, nullable=False, index=True)
    trigger_config = Column(JSON, nullable=False, default=dict)
    meta = Column("metadata", JSON, nullable=False, default=dict)
    executions_count = Column(Integer, nullable=False, default=0)
    last_executed_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=_utcnow, nullable=False)
    updated_at = Column(DateTime, default=_utcnow, onupdate=_utcnow, nullable=False)

    steps = relationship(
        "WorkflowStep",
        back_populates="workflow",
        order_by="WorkflowStep.position",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    @property
    def cron_expression(self) -> Optional[str]:
        if self.trigger_type != "schedule":
            return None
        return (self.trigger_config or {}).get("cron")

    @property
    def event_type(self) -> Optional[str]:
        if self.trigger_type != "event":
            return None
        return (self.trigger_config or {}).get("event_type")


class WorkflowStep(Base):
    __tablename__ = "workflow_steps"
    __table_args__ = (UniqueConstraint("workflow_id", "position", name="uq_workflow_step_position"),)

    id = Column(Integer, primary_key=True, index=True)
    workflow_id = Column(Integer, ForeignKey("workflows.id", ondelete="CASCADE"), nullable=False, index=True)
    step_type = Column(String, nullable=False, index=True)
    name = Column(String, nullable=True)
    position = Column(Integer, nullable=False)
    config = Column(JSON, nullable=False, default=dict)
    conditions = Column(JSON, nullable=False, default=dict)
    enabled = Column(Boolean, nullable=False, default=True)
    continue_on_failure = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, default=_utcnow, nullable=False)
    updated_at = Column(DateTime, default=_utcnow, onupdate=_utcnow, nullable=False)

    workflow = relationship("Workflow", back_populates="steps")


class WorkflowExecution(Base):
    """One run of a workflow."""

    __tablename__ = "workflow_executions"
    __table_args__ = (Index("ix_workflow_executions_workflow_status", "workflow_id", "status"),)

    id = Column(Integer, primary_key=True, index=True)
    workflow_id = Column(Integer, ForeignKey("workflows.id", ondelete="CASCADE"), nullable=False)
    workspace_id = Column(Integer, ForeignKey("workspaces.id"), nullable=True)
    status = Column(String, nullable=False, default=ExecutionStatus.PENDING.value, index=True)
    trigger_source = Column(String, nullable=True)
    context = Column(JSON, nullable=False, default=dict)
    trigger_data = Column(JSON, nullable=False, default=dict)
    current_step_position = Column(Integer, nullable=False, default=0)
    completed_steps_count = Column(Integer, nullable=False, default=0)
    failed_steps_count = Column(Integer, nullable=False, default=0)
    started_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)
    duration_ms = Column(Integer, nullable=True)
    error_message = Column(Text, nullable=True)
    created_at = Column(DateTime, default=_utcnow, nullable=False)
    updated_at = Column(DateTime, default=_utcnow, onupdate=_utcnow, nullable=False)

    logs = relationship(
        "WorkflowStepLog",
        back_populates="execution",
        order_by="WorkflowStepLog.position",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    @property
    def is_finished(self) -> bool:
        return self.status in {"completed", "failed", "cancelled"}

    @property
    def can_cancel(self) -> bool:
        return self.status in {"pending", "running"}

    @property
    def can_resume(self) -> bool:
        return self.status == "failed" and any(log.status == "failed" for log in self.logs)


class WorkflowStepLog(Base):
    __tablename__ = "workflow_step_logs"

    id = Column(Integer, primary_key=True, index=True)
    workflow_execution_id = Column(
        Integer, ForeignKey("workflow_executions.id", ondelete="CASCADE"), nullable=False, index=True
    )
    workflow_step_id = Column(Integer, ForeignKey("workflow_steps.id", ondelete="CASCADE"), nullable=False)
    status = Column(String, nullable=False, default=StepLogStatus.PENDING.value, index=True)
    position = Column(Integer, nullable=True)
    input_data = Column(JSON, nullable=False, default=dict)
    output_data = Column(JSON, nullable=False, default=dict)
    started_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)
    duration_ms = Column(Integer, nullable=True)
    error_message = Column(Text, nullable=True)
    error_backtrace = Column(Text, nullable=True)
    retry_count = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime, default=_utcnow, nullable=False)
    updated_at = Column(DateTime, default=_utcnow, onupdate=_utcnow, nullable=False)

    execution = relationship("WorkflowExecution", back_populates="logs")


class Notification(Base):
    """In-app notification, written by workflow notify steps."""

    __tablename__ = "notifications"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    workspace_id = Column(Integer, ForeignKey("workspaces.id"), nullable=True)
    title = Column(String, nullable=False)
    message = Column(Text, nullable=False)
    notification_type = Column(String, nullable=False, default="info")
    data = Column(JSON, nullable=False, default=dict)
    read_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=_utcnow, nullable=False)


class BackgroundJob(Base):
    """Background job tracking for async processing."""

    __tablename__ = "background_jobs"

    id = Column(String, primary_key=True)  # Dramatiq message ID
    job_type = Column(String, nullable=False)
    status = Column(String, nullable=False, default="pending", index=True)
    progress = Column(Integer, default=0)
    payload = Column(JSON, nullable=True)
    result = Column(JSON, nullable=True)
    error = Column(Text, nullable=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=True, index=True)
    created_at = Column(DateTime, default=_utcnow, nullable=False)
    started_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)
