import json
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, Field, field_validator

MAX_METADATA_KEYS = 32
MAX_METADATA_KEY_LENGTH = 64
MAX_METADATA_BYTES = 8 * 1024

ContentType = Literal["user_message", "agent_message", "document", "decision", "tool_result"]
Scope = Literal["user", "org"]
SearchScope = Literal["user", "org", "both"]
Visibility = Literal["private", "team", "org"]
ConfidenceTier = Literal["high", "medium", "low"]
PrecheckDecision = Literal["allow", "redact", "block", "deny"]

MetadataScalar = Union[str, int, float, bool, None]
MetadataValue = Union[MetadataScalar, List[MetadataScalar]]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RetentionTier(str, Enum):
    """Lifecycle stage controlling the storage fidelity of a memory item."""

    HOT = "hot"
    WARM = "warm"
    COLD = "cold"
    DELETED = "deleted"

    @property
    def rank(self) -> int:
        return _TIER_ORDER.index(self)

    def next(self) -> Optional["RetentionTier"]:
        """The tier this one ages into, or None for DELETED."""
        if self is RetentionTier.DELETED:
            return None
        return _TIER_ORDER[self.rank + 1]


_TIER_ORDER = [RetentionTier.HOT, RetentionTier.WARM, RetentionTier.COLD, RetentionTier.DELETED]


def validate_metadata(metadata: Dict[str, Any]) -> Dict[str, Any]:
    """
    Enforce the bounds on free-form memory metadata.

    At most 32 keys, keys up to 64 characters, scalar or list-of-scalar
    values, and at most 8 KiB once serialized as JSON.
    """
    if len(metadata) > MAX_METADATA_KEYS:
        raise ValueError(f"metadata has {len(metadata)} keys (max {MAX_METADATA_KEYS})")

    for key, value in metadata.items():
        if len(key) > MAX_METADATA_KEY_LENGTH:
            raise ValueError(f"metadata key '{key[:20]}...' exceeds {MAX_METADATA_KEY_LENGTH} chars")
        values = value if isinstance(value, list) else [value]
        for item in values:
            if item is not None and not isinstance(item, (str, int, float, bool)):
                raise ValueError(f"metadata value for '{key}' must be a scalar or list of scalars")

    size = len(json.dumps(metadata, default=str).encode("utf-8"))
    if size > MAX_METADATA_BYTES:
        raise ValueError(f"metadata is {size} bytes (max {MAX_METADATA_BYTES})")

    return metadata


class MemoryItem(BaseModel):
    """One stored unit of conversational or document context."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    user_id: str
    org_id: str
    scope: Scope = "user"
    visibility: Visibility = "private"

    content: str
    summary: Optional[str] = None
    content_type: ContentType = "user_message"
    metadata: Dict[str, MetadataValue] = Field(default_factory=dict)

    agent_id: Optional[str] = None
    agent_name: Optional[str] = None
    conversation_id: Optional[str] = None
    parent_id: Optional[str] = None
    correlation_id: Optional[str] = None

    # Lifecycle
    retention: RetentionTier = RetentionTier.HOT
    chunks_computed: bool = False
    archived_at: Optional[datetime] = None
    archive_ref: Optional[str] = None

    # Importance markers
    starred: bool = False
    upvoted: bool = False
    importance: float = Field(default=0.5, ge=0.0, le=1.0)

    # Content safety
    pii_detected: bool = False
    pii_redacted: bool = False
    raw_content: Optional[str] = None
    precheck_decision: Optional[PrecheckDecision] = None

    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    expires_at: Optional[datetime] = None

    @field_validator("metadata")
    @classmethod
    def _bounded_metadata(cls, value: Dict[str, Any]) -> Dict[str, Any]:
        return validate_metadata(value)


class Chunk(BaseModel):
    """Fixed-size token-bounded slice of a memory item."""

    id: str
    memory_id: str
    index: int = Field(..., ge=0)
    content: str
    token_count: int = Field(..., ge=0)
    created_at: datetime = Field(default_factory=utcnow)

    @staticmethod
    def make_id(memory_id: str, index: int) -> str:
        """Deterministic chunk id so rechunking reproduces the same ids."""
        return str(uuid.uuid5(uuid.NAMESPACE_URL, f"{memory_id}:{index}"))


class ScoredMemoryItem(BaseModel):
    """A memory item augmented with query-time scores. Never persisted."""

    memory: MemoryItem
    similarity: float
    age_in_days: float = 0.0
    recency_score: float = 0.0
    final_score: float = 0.0
    tier: Optional[ConfidenceTier] = None

    @property
    def id(self) -> str:
        return self.memory.id

    @property
    def content(self) -> str:
        return self.memory.content


class ScoredChunk(BaseModel):
    """A chunk hit from the chunk index, with its parent memory item."""

    chunk: Chunk
    score: float
    embedding: List[float] = Field(default_factory=list)
    memory: MemoryItem


class SearchFilters(BaseModel):
    """Owner/agent/conversation scoping for retrieval."""

    user_id: str
    org_id: str
    scope: SearchScope = "user"
    agent_id: Optional[str] = None
    conversation_id: Optional[str] = None
    content_types: Optional[List[ContentType]] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None


class PrecheckResult(BaseModel):
    decision: PrecheckDecision = "allow"
    redacted_content: Optional[str] = None
    pii_types: List[str] = Field(default_factory=list)
    reasons: List[str] = Field(default_factory=list)

    @property
    def blocked(self) -> bool:
        return self.decision in ("block", "deny")


class StoreRequest(BaseModel):
    """Input for ingesting one memory item."""

    user_id: str
    org_id: str
    content: str
    content_type: ContentType = "user_message"
    agent_id: str
    agent_name: Optional[str] = None
    conversation_id: Optional[str] = None
    parent_id: Optional[str] = None
    correlation_id: Optional[str] = None
    summary: Optional[str] = None
    metadata: Dict[str, MetadataValue] = Field(default_factory=dict)
    scope: Scope = "user"
    visibility: Visibility = "private"
    importance: float = Field(default=0.5, ge=0.0, le=1.0)
    expires_at: Optional[datetime] = None
    precheck: Optional[PrecheckResult] = Field(
        default=None, description="Precomputed precheck outcome (skips the local check)"
    )

    @field_validator("metadata")
    @classmethod
    def _bounded_metadata(cls, value: Dict[str, Any]) -> Dict[str, Any]:
        return validate_metadata(value)


class StoreResult(BaseModel):
    """Outcome of an ingestion call."""

    action: Literal["stored", "blocked"]
    memory_id: Optional[str] = None
    chunk_job: Literal["queued", "unavailable", "not_requested"] = "not_requested"
    pii_detected: bool = False
    pii_redacted: bool = False
    reasons: List[str] = Field(default_factory=list)


# =============================================================================
# Ledger rows owned by external collaborators, archived by the core
# =============================================================================


class Conversation(BaseModel):
    id: str
    user_id: str
    org_id: str
    title: Optional[str] = None
    summary: Optional[str] = None
    agent_id: Optional[str] = None
    agent_name: Optional[str] = None
    message_count: int = 0
    token_count: int = 0
    cost: float = 0.0
    tags: List[str] = Field(default_factory=list)
    scope: Scope = "user"
    is_archived: bool = False
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    last_message_at: Optional[datetime] = None


class Decision(BaseModel):
    id: str
    org_id: str
    direction: str
    decision: str
    tool: Optional[str] = None
    scope: Optional[str] = None
    payload_hash: str
    policy_id: Optional[str] = None
    latency_ms: Optional[int] = None
    correlation_id: Optional[str] = None
    reasons: List[str] = Field(default_factory=list)
    tags: List[str] = Field(default_factory=list)
    ts: datetime = Field(default_factory=utcnow)


class UsageRecord(BaseModel):
    id: str
    user_id: str
    org_id: str
    provider: str
    model: str
    input_tokens: int = 0
    output_tokens: int = 0
    cost: str = "0"
    cost_type: str = "external"
    tool: Optional[str] = None
    correlation_id: Optional[str] = None
    timestamp: datetime = Field(default_factory=utcnow)


class PurchaseRecord(BaseModel):
    id: str
    user_id: str
    org_id: str
    tool: str
    amount: str
    currency: str = "USD"
    description: Optional[str] = None
    vendor: Optional[str] = None
    category: Optional[str] = None
    correlation_id: Optional[str] = None
    timestamp: datetime = Field(default_factory=utcnow)


class AccessLog(BaseModel):
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    context_id: Optional[str] = None
    user_id: str
    org_id: str
    access_type: str = "search"
    query: Optional[str] = None
    results_count: Optional[int] = None
    created_at: datetime = Field(default_factory=utcnow)


class RecordKind(str, Enum):
    CONVERSATIONS = "conversations"
    DECISIONS = "decisions"
    USAGE_RECORDS = "usage_records"
    PURCHASE_RECORDS = "purchase_records"
    ACCESS_LOGS = "access_logs"


LedgerRecord = Union[Conversation, Decision, UsageRecord, PurchaseRecord, AccessLog]

RECORD_MODELS = {
    RecordKind.CONVERSATIONS: Conversation,
    RecordKind.DECISIONS: Decision,
    RecordKind.USAGE_RECORDS: UsageRecord,
    RecordKind.PURCHASE_RECORDS: PurchaseRecord,
    RecordKind.ACCESS_LOGS: AccessLog,
}

# Field each record kind is range-filtered on
RECORD_TIME_FIELDS = {
    RecordKind.CONVERSATIONS: "created_at",
    RecordKind.DECISIONS: "ts",
    RecordKind.USAGE_RECORDS: "timestamp",
    RecordKind.PURCHASE_RECORDS: "timestamp",
    RecordKind.ACCESS_LOGS: "created_at",
}
