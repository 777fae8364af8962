"""Pydantic schemas for request and response models.

Pydantic models validate and serialise data that crosses the boundary
of the API. They are intentionally separate from the SQLAlchemy models
so the shape exposed through the API can differ from what is stored.
Read models use ``from_attributes=True`` so routes can return
``XRead.model_validate(row, from_attributes=True)``.
"""

from __future__ import annotations

import base64
import binascii
import datetime as dt
import re
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from ledgerly.utils.helpers import is_valid_cron
from ledgerly.utils.sanitization import sanitize_string
from .enums import (
    Currency,
    FileFormat,
    InvoiceSource,
    MatchField,
    PatternType,
    TransactionType,
    TriggerType,
    TxKind,
)

GSTIN_PATTERN = re.compile(r"^\d{2}[A-Z]{5}\d{4}[A-Z][A-Z\d]Z[A-Z\d]$")


# ---------------------------------------------------------------------------
# Users, categories, accounts


class UserRead(BaseModel):
    id: int
    email: str
    name: str
    created_at: dt.datetime

    model_config = ConfigDict(from_attributes=True)


class SubcategoryRead(BaseModel):
    id: int
    category_id: int
    name: str
    slug: str
    keywords: List[str] = Field(default_factory=list)
    is_default: bool = False

    model_config = ConfigDict(from_attributes=True)


class CategoryRead(BaseModel):
    id: int
    name: str
    slug: str
    parent_id: Optional[int] = None
    icon: Optional[str] = None
    color: Optional[str] = None
    description: Optional[str] = None
    is_system: bool = False

    model_config = ConfigDict(from_attributes=True)


class CategoryCreate(BaseModel):
    name: str = Field(min_length=1, max_length=80)
    parent_id: Optional[int] = None
    icon: Optional[str] = None
    color: Optional[str] = None
    description: Optional[str] = None

    @field_validator("name", "description", mode="before")
    def sanitize_fields(cls, v):
        return sanitize_string(v) if isinstance(v, str) else v


class SubcategoryCreate(BaseModel):
    name: str = Field(min_length=1, max_length=80)
    keywords: List[str] = Field(default_factory=list)
    is_default: bool = False


class AccountCreate(BaseModel):
    name: str = Field(min_length=1)
    bank_name: str = Field(min_length=1)
    account_number_last4: Optional[str] = Field(default=None, max_length=4)
    account_type: Optional[str] = None
    currency: Currency = Currency.INR


class AccountRead(BaseModel):
    id: int
    name: str
    bank_name: str
    account_number_last4: Optional[str] = None
    account_type: Optional[str] = None
    currency: str
    is_active: bool
    display_name: str
    current_balance: Optional[float] = None

    model_config = ConfigDict(from_attributes=True)


# ---------------------------------------------------------------------------
# Bank templates & statements


class BankTemplateRead(BaseModel):
    id: int
    bank_name: str
    bank_code: str
    account_type: str
    file_format: str
    parser_class: Optional[str] = None
    description: Optional[str] = None
    column_mappings: Dict[str, Any] = Field(default_factory=dict)
    parser_config: Dict[str, Any] = Field(default_factory=dict)
    is_active: bool = True
    display_name: str

    model_config = ConfigDict(from_attributes=True)


class BankTemplateGroup(BaseModel):
    bank_code: str
    bank_name: str
    templates: List[BankTemplateRead]


class StatementCreate(BaseModel):
    """Statement registration with the raw file inlined as base64."""

    file_name: str = Field(min_length=1)
    file_type: Optional[FileFormat] = None
    bank_template_id: Optional[int] = None
    account_id: Optional[int] = None
    content_base64: str = Field(min_length=1)
    parse_async: bool = True

    @model_validator(mode="after")
    def infer_file_type(self):
        if self.file_type is None:
            ext = self.file_name.rsplit(".", 1)[-1].lower() if "." in self.file_name else ""
            try:
                self.file_type = FileFormat(ext)
            except ValueError as exc:
                raise ValueError(f"Unsupported file type: {ext or 'unknown'}") from exc
        return self

    def decoded_content(self) -> bytes:
        try:
            return base64.b64decode(self.content_base64, validate=True)
        except (binascii.Error, ValueError) as exc:
            raise ValueError("content_base64 is not valid base64") from exc


class StatementRead(BaseModel):
    id: int
    file_name: str
    file_type: str
    status: str
    error_message: Optional[str] = None
    parsed_at: Optional[dt.datetime] = None
    account_id: Optional[int] = None
    bank_template_id: Optional[int] = None
    parsing_progress: Dict[str, Any] = Field(default_factory=dict)
    created_at: dt.datetime
    job_id: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


class StatementSummary(BaseModel):
    statement_id: int
    transaction_count: int
    total_debits: float
    total_credits: float
    period_start: Optional[dt.date] = None
    period_end: Optional[dt.date] = None
    is_credit_card: bool = False
    outstanding_balance: float = 0.0


# ---------------------------------------------------------------------------
# Transactions


class TransactionCreate(BaseModel):
    transaction_date: dt.date
    description: str = Field(min_length=1)
    amount: float = Field(gt=0)
    transaction_type: TransactionType
    balance: Optional[float] = None
    reference: Optional[str] = None
    account_id: Optional[int] = None
    category_id: Optional[int] = None
    subcategory_id: Optional[int] = None

    model_config = ConfigDict(use_enum_values=True)


class TransactionUpdate(BaseModel):
    description: Optional[str] = None
    category_id: Optional[int] = None
    subcategory_id: Optional[int] = None
    is_reviewed: Optional[bool] = None
    tx_kind: Optional[TxKind] = None


class TransactionRead(BaseModel):
    id: int
    transaction_date: dt.date
    description: str
    original_description: Optional[str] = None
    amount: float
    signed_amount: float
    transaction_type: str
    balance: Optional[float] = None
    reference: Optional[str] = None
    statement_id: Optional[int] = None
    account_id: Optional[int] = None
    category_id: Optional[int] = None
    subcategory_id: Optional[int] = None
    ai_category_id: Optional[int] = None
    confidence: Optional[float] = None
    confidence_band: Optional[str] = None
    categorization_status: str
    tx_kind: Optional[str] = None
    counterparty_name: Optional[str] = None
    is_reviewed: bool
    invoice_id: Optional[int] = None
    meta: Dict[str, Any] = Field(default_factory=dict, serialization_alias="metadata")

    model_config = ConfigDict(from_attributes=True)


class CategorizeRequest(BaseModel):
    transaction_ids: List[int] = Field(min_length=1)
    run_async: bool = False
    enable_llm: bool = True


class CategorizationResultRead(BaseModel):
    transaction_id: Optional[int] = None
    category_slug: Optional[str] = None
    subcategory_slug: Optional[str] = None
    tx_kind: Optional[str] = None
    counterparty_name: Optional[str] = None
    confidence: float = 0.0
    method: str
    explanation: Optional[str] = None
    needs_embedding: bool = False


class FeedbackRequest(BaseModel):
    category_id: int
    subcategory_id: Optional[int] = None
    apply_to_similar: bool = False


class FeedbackResponse(BaseModel):
    transaction: TransactionRead
    rule_id: Optional[int] = None
    labeled_example_id: Optional[int] = None
    similar_updated: int = 0


class TransactionStats(BaseModel):
    total_count: int
    total_debits: float
    total_credits: float
    net: float
    by_category: Dict[str, float]
    by_type: Dict[str, int]
    uncategorized_count: int
    analytics: Optional[Dict[str, Any]] = None


# ---------------------------------------------------------------------------
# User rules


class UserRuleCreate(BaseModel):
    pattern: str = Field(min_length=1, max_length=200)
    pattern_type: PatternType = PatternType.KEYWORD
    match_field: MatchField = MatchField.DESCRIPTION
    category_id: int
    subcategory_id: Optional[int] = None
    amount_min: Optional[float] = None
    amount_max: Optional[float] = None
    priority: int = 0

    @field_validator("pattern", mode="before")
    def normalize_pattern(cls, v):
        return v.strip().lower() if isinstance(v, str) else v

    @model_validator(mode="after")
    def check_pattern(self):
        if self.pattern_type == PatternType.REGEX:
            try:
                re.compile(self.pattern)
            except re.error as exc:
                raise ValueError(f"pattern is not a valid regex: {exc}") from exc
        if self.amount_min is not None and self.amount_max is not None and self.amount_min > self.amount_max:
            raise ValueError("amount_min must be less than or equal to amount_max")
        return self


class UserRuleUpdate(BaseModel):
    category_id: Optional[int] = None
    subcategory_id: Optional[int] = None
    priority: Optional[int] = None
    is_active: Optional[bool] = None


class UserRuleRead(BaseModel):
    id: int
    pattern: str
    pattern_type: str
    match_field: str
    category_id: int
    subcategory_id: Optional[int] = None
    amount_min: Optional[float] = None
    amount_max: Optional[float] = None
    priority: int
    match_count: int
    is_active: bool
    source: str
    last_matched_at: Optional[dt.datetime] = None

    model_config = ConfigDict(from_attributes=True)


# ---------------------------------------------------------------------------
# Invoices


class InvoiceCreate(BaseModel):
    """Invoice registration with extracted header fields or the raw document text."""

    source: InvoiceSource = InvoiceSource.UPLOAD
    file_name: Optional[str] = None
    vendor_name: Optional[str] = None
    vendor_gstin: Optional[str] = None
    invoice_number: Optional[str] = None
    invoice_date: Optional[dt.date] = None
    total_amount: Optional[float] = Field(default=None, gt=0)
    currency: Currency = Currency.INR
    account_id: Optional[int] = None
    extracted_data: Dict[str, Any] = Field(default_factory=dict)
    # Document text to extract the header fields from when they are not given.
    text: Optional[str] = Field(default=None, max_length=200_000)
    auto_match: bool = True

    model_config = ConfigDict(use_enum_values=True)

    @field_validator("vendor_gstin", mode="before")
    def validate_gstin(cls, v):
        if v is None or v == "":
            return None
        value = str(v).strip().upper()
        if not GSTIN_PATTERN.match(value):
            raise ValueError("is not a valid GSTIN format")
        return value

    @field_validator("vendor_name", "invoice_number", mode="before")
    def sanitize_fields(cls, v):
        return sanitize_string(v) if isinstance(v, str) else v


class InvoiceRead(BaseModel):
    id: int
    source: str
    status: str
    file_name: Optional[str] = None
    vendor_name: Optional[str] = None
    vendor_gstin: Optional[str] = None
    invoice_number: Optional[str] = None
    invoice_date: Optional[dt.date] = None
    total_amount: Optional[float] = None
    currency: Optional[str] = None
    matched_transaction_id: Optional[int] = None
    match_confidence: Optional[float] = None
    matched_at: Optional[dt.datetime] = None
    matched_by: Optional[str] = None
    created_at: dt.datetime
    job_id: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


class MatchCandidate(BaseModel):
    transaction_id: int
    transaction_date: dt.date
    description: str
    amount: float
    score: int
    breakdown: Dict[str, int]


class MatchResultRead(BaseModel):
    invoice_id: int
    matched: bool
    transaction_id: Optional[int] = None
    confidence: Optional[int] = None
    suggestions: List[MatchCandidate] = Field(default_factory=list)


class InvoiceLinkRequest(BaseModel):
    transaction_id: int


# ---------------------------------------------------------------------------
# Workflows


class WorkflowStepCreate(BaseModel):
    step_type: str
    name: Optional[str] = None
    position: int = Field(gt=0)
    config: Dict[str, Any] = Field(default_factory=dict)
    conditions: Dict[str, Any] = Field(default_factory=dict)
    enabled: bool = True
    continue_on_failure: bool = False


class WorkflowStepRead(BaseModel):
    id: int
    step_type: str
    name: Optional[str] = None
    position: int
    config: Dict[str, Any] = Field(default_factory=dict)
    conditions: Dict[str, Any] = Field(default_factory=dict)
    enabled: bool
    continue_on_failure: bool

    model_config = ConfigDict(from_attributes=True)


def _check_cron(trigger_config: Dict[str, Any]) -> None:
    cron = trigger_config.get("cron")
    if cron and not is_valid_cron(cron):
        raise ValueError(f"invalid cron expression: {cron!r}")


class WorkflowCreate(BaseModel):
    name: str = Field(min_length=1, max_length=120)
    description: Optional[str] = None
    trigger_type: TriggerType = TriggerType.MANUAL
    trigger_config: Dict[str, Any] = Field(default_factory=dict)
    steps: List[WorkflowStepCreate] = Field(default_factory=list)

    @model_validator(mode="after")
    def check_trigger(self):
        if self.trigger_type == TriggerType.SCHEDULE and not self.trigger_config.get("cron"):
            raise ValueError("scheduled workflows need trigger_config.cron")
        _check_cron(self.trigger_config)
        if self.trigger_type == TriggerType.EVENT and not self.trigger_config.get("event_type"):
            raise ValueError("event workflows need trigger_config.event_type")
        positions = [s.position for s in self.steps]
        if len(positions) != len(set(positions)):
            raise ValueError("step positions must be unique within workflow")
        return self


class WorkflowUpdate(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    trigger_config: Optional[Dict[str, Any]] = None

    @field_validator("trigger_config")
    @classmethod
    def check_cron(cls, value):
        if value is not None:
            _check_cron(value)
        return value


class WorkflowRead(BaseModel):
    id: int
    name: str
    description: Optional[str] = None
    status: str
    trigger_type: str
    trigger_config: Dict[str, Any] = Field(default_factory=dict)
    executions_count: int
    last_executed_at: Optional[dt.datetime] = None
    steps: List[WorkflowStepRead] = Field(default_factory=list)

    model_config = ConfigDict(from_attributes=True)


class WorkflowExecuteRequest(BaseModel):
    trigger_data: Dict[str, Any] = Field(default_factory=dict)
    run_sync: bool = False


class StepLogRead(BaseModel):
    id: int
    workflow_step_id: int
    status: str
    position: Optional[int] = None
    input_data: Dict[str, Any] = Field(default_factory=dict)
    output_data: Dict[str, Any] = Field(default_factory=dict)
    duration_ms: Optional[int] = None
    error_message: Optional[str] = None
    retry_count: int = 0

    model_config = ConfigDict(from_attributes=True)


class WorkflowExecutionRead(BaseModel):
    id: int
    workflow_id: int
    status: str
    trigger_source: Optional[str] = None
    trigger_data: Dict[str, Any] = Field(default_factory=dict)
    context: Dict[str, Any] = Field(default_factory=dict)
    current_step_position: int
    completed_steps_count: int
    failed_steps_count: int
    started_at: Optional[dt.datetime] = None
    completed_at: Optional[dt.datetime] = None
    duration_ms: Optional[int] = None
    error_message: Optional[str] = None
    logs: List[StepLogRead] = Field(default_factory=list)

    model_config = ConfigDict(from_attributes=True)


class StepTypeInfo(BaseModel):
    type: str
    name: str
    description: str
    category: str
    icon: str
    config_schema: Dict[str, Any]


class NotificationRead(BaseModel):
    id: int
    title: str
    message: str
    notification_type: str
    data: Dict[str, Any] = Field(default_factory=dict)
    read_at: Optional[dt.datetime] = None
    created_at: dt.datetime

    model_config = ConfigDict(from_attributes=True)


# ---------------------------------------------------------------------------
# Background jobs


class JobResponse(BaseModel):
    """Background job status response."""

    id: str
    job_type: str
    status: str
    progress: int = 0
    payload: Optional[Dict[str, Any]] = None
    result: Optional[Dict[str, Any]] = None
    error: Optional[str] = None
    created_at: dt.datetime
    started_at: Optional[dt.datetime] = None
    completed_at: Optional[dt.datetime] = None

    model_config = ConfigDict(from_attributes=True)


class JobQueued(BaseModel):
    """Returned by endpoints that hand work to the worker."""

    job_id: Optional[str] = None
    status: str = "queued"
    resource_id: Optional[int] = None
