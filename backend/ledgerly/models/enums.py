"""Enumeration types used throughout the Ledgerly API.

Enumerations constrain the values that can be stored in the database or
passed through the API. Status-like columns are stored as plain strings
so they stay readable in SQL; these enums are the single source of the
allowed values.
"""

from enum import Enum


class TransactionType(str, Enum):
    DEBIT = "debit"
    CREDIT = "credit"


class TxKind(str, Enum):
    """High-level intent of a transaction."""

    SPEND = "spend"
    TRANSFER_P2P = "transfer_p2p"
    TRANSFER_SELF = "transfer_self"
    TRANSFER_WALLET = "transfer_wallet"
    INCOME_SALARY = "income_salary"
    INCOME_BONUS = "income_bonus"
    INCOME_INVESTMENT = "income_investment"
    INCOME_REFUND = "income_refund"
    INVESTMENT = "investment"
    LOAN_EMI = "loan_emi"
    FEE = "fee"
    TAX = "tax"
    CASH = "cash"


class CategorizationStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class CategorizationMethod(str, Enum):
    """Which layer of the triage produced a categorisation."""

    TRANSFER = "transfer_classifier"
    USER_RULE = "user_rule"
    SYSTEM_RULE = "system_rule"
    GLOBAL_PATTERN = "global_pattern"
    EMBEDDING_FEEDBACK = "embedding_feedback"
    EMBEDDING = "embedding"
    LLM = "llm"
    NONE = "none"


class StatementStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    PARSED = "parsed"
    FAILED = "failed"


class FileFormat(str, Enum):
    CSV = "csv"
    XLS = "xls"
    XLSX = "xlsx"
    PDF = "pdf"


class AccountType(str, Enum):
    """Account types a bank template can describe."""

    SAVINGS = "savings"
    CURRENT = "current"
    CREDIT_CARD = "credit_card"
    SALARY = "salary"
    FD_RD = "fd_rd"
    LOAN = "loan"


class AnalyticsStatus(str, Enum):
    QUEUED = "queued"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class PatternType(str, Enum):
    """How a user rule pattern is compared to text."""

    KEYWORD = "keyword"
    REGEX = "regex"
    EXACT = "exact"


class MatchField(str, Enum):
    DESCRIPTION = "description"
    NORMALIZED = "normalized"
    AMOUNT_RANGE = "amount_range"


class RuleSource(str, Enum):
    MANUAL = "manual"
    FEEDBACK = "feedback"
    LLM_AUTO = "llm_auto"


class GlobalPatternType(str, Enum):
    KEYWORD = "keyword"
    EXACT = "exact"
    PREFIX = "prefix"
    SUFFIX = "suffix"


class InvoiceStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    EXTRACTED = "extracted"
    MATCHED = "matched"
    UNMATCHED = "unmatched"
    FAILED = "failed"


class InvoiceSource(str, Enum):
    UPLOAD = "upload"
    GMAIL = "gmail"


class Currency(str, Enum):
    INR = "INR"
    USD = "USD"
    EUR = "EUR"
    GBP = "GBP"


class WorkflowStatus(str, Enum):
    DRAFT = "draft"
    ACTIVE = "active"
    PAUSED = "paused"
    ARCHIVED = "archived"


class TriggerType(str, Enum):
    SCHEDULE = "schedule"
    EVENT = "event"
    MANUAL = "manual"


class ExecutionStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class StepLogStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"


class MembershipRole(str, Enum):
    OWNER = "owner"
    ADMIN = "admin"
    MEMBER = "member"
