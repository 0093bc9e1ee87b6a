"""
Data models for the Automation Service.

Domain objects (definitions, conditions, actions, execution records) are
plain dataclasses; request/response bodies of the HTTP surface are pydantic
models.
"""

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Tuple

from pydantic import BaseModel, Field, model_validator


class ConditionOperator(str, Enum):
    """Condition operators understood by the evaluator."""
    EQUALS = "equals"
    NOT_EQUALS = "not_equals"
    GT = "gt"
    GTE = "gte"
    LT = "lt"
    LTE = "lte"
    CONTAINS = "contains"
    NOT_CONTAINS = "not_contains"
    IN = "in"
    NOT_IN = "not_in"
    BETWEEN = "between"


class LogicalOperator(str, Enum):
    """How the next condition is folded into the running result."""
    AND = "AND"
    OR = "OR"


class ExecutionStatus(str, Enum):
    """Terminal status of one definition evaluation attempt."""
    SUCCESS = "success"
    PARTIAL = "partial"
    FAILED = "failed"
    SKIPPED = "skipped"


class ActionStatus(str, Enum):
    """Outcome of a single dispatched action."""
    SUCCESS = "success"
    FAILED = "failed"


# Rule type tags and domain events used as trigger keys. Trigger keys are
# free-form; these are the ones upstream producers emit today.
RULE_TYPES = ("validation", "pricing", "routing", "automation")

TRIGGER_EVENTS = {
    "ORDER_CREATED": "order.created",
    "ORDER_UPDATED": "order.updated",
    "ORDER_CANCELLED": "order.cancelled",
    "ORDER_DELIVERED": "order.delivered",
    "USER_REGISTERED": "user.registered",
    "USER_SUSPENDED": "user.suspended",
    "PRODUCT_LOW_STOCK": "product.lowStock",
    "PRODUCT_OUT_OF_STOCK": "product.outOfStock",
    "PRESCRIPTION_EXPIRING": "prescription.expiring",
    "REVIEW_SUBMITTED": "review.submitted",
    "PAYMENT_FAILED": "payment.failed",
    "PAYMENT_RECEIVED": "payment.received",
}

MANUAL_TEST_TRIGGER = "manual_test"


def utcnow() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def parse_datetime(value: Any) -> Optional[datetime]:
    """Parse an ISO string or datetime into an aware UTC datetime."""
    if value is None or value == "":
        return None
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        # Epoch milliseconds
        return datetime.fromtimestamp(value / 1000, tz=timezone.utc)
    if isinstance(value, str):
        value = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if not isinstance(value, datetime):
        raise TypeError(f"Unsupported datetime value: {value!r}")
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _isoformat(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


@dataclass
class Condition:
    """A single field/operator/value test.

    ``operator`` is kept as a plain string so that unknown operators can be
    stored and fail closed at evaluation time.
    """
    field: str
    operator: str
    value: Any = None
    value2: Any = None
    logical_operator: Optional[str] = None

    def describe(self) -> str:
        """Human-readable form used in trace logs."""
        if self.operator == ConditionOperator.BETWEEN.value:
            return f"{self.field} between {self.value!r} and {self.value2!r}"
        return f"{self.field} {self.operator} {self.value!r}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "field": self.field,
            "operator": self.operator,
            "value": self.value,
            "value2": self.value2,
            "logical_operator": self.logical_operator,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Condition":
        """Build a condition, normalising the legacy ``between`` form.

        Older definitions store both bounds as ``value=[low, high]``; the
        canonical form is ``value=low, value2=high``.
        """
        operator = data.get("operator", "")
        if isinstance(operator, Enum):
            operator = operator.value
        operator = str(operator)
        value = data.get("value")
        value2 = data.get("value2")
        if (
            operator == ConditionOperator.BETWEEN.value
            and value2 is None
            and isinstance(value, (list, tuple))
            and len(value) == 2
        ):
            value, value2 = value[0], value[1]

        logical = data.get("logical_operator", data.get("logicalOperator"))
        if isinstance(logical, Enum):
            logical = logical.value
        return cls(
            field=str(data.get("field", "")),
            operator=operator,
            value=value,
            value2=value2,
            logical_operator=str(logical).upper() if logical else None,
        )


@dataclass
class Action:
    """An action to dispatch when a definition matches."""
    type: str
    config: Dict[str, Any] = field(default_factory=dict)
    order: Optional[int] = None

    @property
    def sort_order(self) -> int:
        return self.order if self.order is not None else 0

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.type, "config": dict(self.config), "order": self.order}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Action":
        order = data.get("order")
        return cls(
            type=str(data.get("type", "")),
            config=dict(data.get("config") or {}),
            order=int(order) if order is not None else None,
        )


@dataclass
class Definition:
    """A rule or workflow: conditions, actions and scheduling metadata."""
    definition_id: str
    name: str
    trigger_key: str
    conditions: List[Condition] = field(default_factory=list)
    actions: List[Action] = field(default_factory=list)
    description: Optional[str] = None
    priority: int = 0
    enabled: bool = True
    valid_from: Optional[datetime] = None
    valid_until: Optional[datetime] = None
    execution_count: int = 0
    last_executed_at: Optional[datetime] = None
    created_at: datetime = field(default_factory=utcnow)
    updated_at: Optional[datetime] = None
    created_by: Optional[str] = None

    def __post_init__(self):
        # Mixed naive/aware datetimes would break ordering and window checks.
        self.valid_from = parse_datetime(self.valid_from)
        self.valid_until = parse_datetime(self.valid_until)
        self.last_executed_at = parse_datetime(self.last_executed_at)
        self.created_at = parse_datetime(self.created_at) or utcnow()
        self.updated_at = parse_datetime(self.updated_at)

    def is_within_validity(self, now: datetime) -> bool:
        """Check the open-ended validity window."""
        if self.valid_from is not None and self.valid_from > now:
            return False
        if self.valid_until is not None and self.valid_until < now:
            return False
        return True

    def copy(self) -> "Definition":
        return replace(
            self,
            conditions=[replace(c) for c in self.conditions],
            actions=[replace(a, config=dict(a.config)) for a in self.actions],
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "definition_id": self.definition_id,
            "name": self.name,
            "description": self.description,
            "trigger_key": self.trigger_key,
            "conditions": [c.to_dict() for c in self.conditions],
            "actions": [a.to_dict() for a in self.actions],
            "priority": self.priority,
            "enabled": self.enabled,
            "valid_from": _isoformat(self.valid_from),
            "valid_until": _isoformat(self.valid_until),
            "execution_count": self.execution_count,
            "last_executed_at": _isoformat(self.last_executed_at),
            "created_at": _isoformat(self.created_at),
            "updated_at": _isoformat(self.updated_at),
            "created_by": self.created_by,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Definition":
        return cls(
            definition_id=str(data["definition_id"]),
            name=data["name"],
            description=data.get("description"),
            trigger_key=data["trigger_key"],
            conditions=[Condition.from_dict(c) for c in data.get("conditions") or []],
            actions=[Action.from_dict(a) for a in data.get("actions") or []],
            priority=int(data.get("priority") or 0),
            enabled=bool(data.get("enabled", True)),
            valid_from=data.get("valid_from"),
            valid_until=data.get("valid_until"),
            execution_count=int(data.get("execution_count") or 0),
            last_executed_at=data.get("last_executed_at"),
            created_at=data.get("created_at"),
            updated_at=data.get("updated_at"),
            created_by=data.get("created_by"),
        )


@dataclass(frozen=True)
class ActionResult:
    """Per-action entry of an execution."""
    action_type: str
    status: ActionStatus
    error: Optional[str] = None
    output: Any = None

    @property
    def succeeded(self) -> bool:
        return self.status == ActionStatus.SUCCESS

    def to_dict(self) -> Dict[str, Any]:
        return {
            "action_type": self.action_type,
            "status": self.status.value,
            "error": self.error,
            "output": self.output,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ActionResult":
        return cls(
            action_type=data["action_type"],
            status=ActionStatus(data["status"]),
            error=data.get("error"),
            output=data.get("output"),
        )


@dataclass(frozen=True)
class ExecutionRecord:
    """Immutable audit entry for one evaluation attempt."""
    record_id: str
    definition_id: str
    definition_name: str
    trigger_key: str
    triggered_by: str
    status: ExecutionStatus
    action_results: Tuple[ActionResult, ...] = ()
    logs: Tuple[str, ...] = ()
    error: Optional[str] = None
    executed_at: datetime = field(default_factory=utcnow)
    duration_ms: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "record_id": self.record_id,
            "definition_id": self.definition_id,
            "definition_name": self.definition_name,
            "trigger_key": self.trigger_key,
            "triggered_by": self.triggered_by,
            "status": self.status.value,
            "action_results": [r.to_dict() for r in self.action_results],
            "logs": list(self.logs),
            "error": self.error,
            "executed_at": _isoformat(self.executed_at),
            "duration_ms": self.duration_ms,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ExecutionRecord":
        return cls(
            record_id=str(data["record_id"]),
            definition_id=str(data["definition_id"]),
            definition_name=data["definition_name"],
            trigger_key=data["trigger_key"],
            triggered_by=data["triggered_by"],
            status=ExecutionStatus(data["status"]),
            action_results=tuple(ActionResult.from_dict(r) for r in data.get("action_results") or []),
            logs=tuple(data.get("logs") or []),
            error=data.get("error"),
            executed_at=parse_datetime(data.get("executed_at")) or utcnow(),
            duration_ms=float(data.get("duration_ms") or 0.0),
        )


@dataclass(frozen=True)
class ExecutionSummary:
    """Per-definition entry returned from a trigger invocation."""
    definition_id: str
    definition_name: str
    status: ExecutionStatus
    duration_ms: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "definition_id": self.definition_id,
            "definition_name": self.definition_name,
            "status": self.status.value,
            "duration_ms": self.duration_ms,
        }


@dataclass
class EvaluationOutcome:
    """Full result of evaluating one definition against one payload."""
    definition_id: str
    definition_name: str
    trigger_key: str
    triggered_by: str
    status: ExecutionStatus = ExecutionStatus.SKIPPED
    conditions_met: bool = False
    action_results: List[ActionResult] = field(default_factory=list)
    logs: List[str] = field(default_factory=list)
    error: Optional[str] = None
    executed_at: datetime = field(default_factory=utcnow)
    duration_ms: float = 0.0
    write_errors: List[str] = field(default_factory=list)

    def to_summary(self) -> ExecutionSummary:
        return ExecutionSummary(
            definition_id=self.definition_id,
            definition_name=self.definition_name,
            status=self.status,
            duration_ms=self.duration_ms,
        )

    def to_record(self, record_id: str) -> ExecutionRecord:
        return ExecutionRecord(
            record_id=record_id,
            definition_id=self.definition_id,
            definition_name=self.definition_name,
            trigger_key=self.trigger_key,
            triggered_by=self.triggered_by,
            status=self.status,
            action_results=tuple(self.action_results),
            logs=tuple(self.logs),
            error=self.error,
            executed_at=self.executed_at,
            duration_ms=self.duration_ms,
        )


# --- HTTP request/response models -------------------------------------------


class ConditionModel(BaseModel):
    """Condition as accepted by the API."""
    field: str = Field(..., min_length=1, description="Dot path into the payload")
    operator: ConditionOperator = Field(..., description="Comparison operator")
    value: Any = Field(None, description="Comparison value (lower bound for between)")
    value2: Any = Field(None, description="Upper bound for between")
    logical_operator: Optional[LogicalOperator] = Field(
        None, description="How the next condition is combined (default AND)"
    )

    @model_validator(mode="before")
    @classmethod
    def normalise_between(cls, data: Any) -> Any:
        if isinstance(data, dict):
            return Condition.from_dict(data).to_dict()
        return data


class ActionModel(BaseModel):
    """Action as accepted by the API."""
    type: str = Field(..., min_length=1, description="Registered action type")
    config: Dict[str, Any] = Field(default_factory=dict, description="Handler configuration")
    order: Optional[int] = Field(None, description="Dispatch order (default 0)")


class DefinitionCreateRequest(BaseModel):
    """Request model for creating a definition."""
    name: str = Field(..., min_length=1, description="Definition name")
    description: Optional[str] = Field(None, description="Definition description")
    trigger_key: str = Field(..., min_length=1, description="Rule type or event name")
    conditions: List[ConditionModel] = Field(default_factory=list, description="Ordered conditions")
    actions: List[ActionModel] = Field(default_factory=list, description="Actions to dispatch")
    priority: int = Field(0, description="Higher priorities are evaluated first")
    enabled: bool = Field(True, description="Whether the definition is active")
    valid_from: Optional[datetime] = Field(None, description="Start of the validity window")
    valid_until: Optional[datetime] = Field(None, description="End of the validity window")
    created_by: Optional[str] = Field(None, description="Author")

    @model_validator(mode="after")
    def check_window(self) -> "DefinitionCreateRequest":
        if self.valid_from and self.valid_until:
            if parse_datetime(self.valid_from) > parse_datetime(self.valid_until):
                raise ValueError("valid_from must not be after valid_until")
        return self

    def to_definition(self, definition_id: str) -> Definition:
        return Definition(
            definition_id=definition_id,
            name=self.name,
            description=self.description,
            trigger_key=self.trigger_key,
            conditions=[Condition.from_dict(c.model_dump(mode="json")) for c in self.conditions],
            actions=[Action.from_dict(a.model_dump()) for a in self.actions],
            priority=self.priority,
            enabled=self.enabled,
            valid_from=self.valid_from,
            valid_until=self.valid_until,
            created_by=self.created_by,
        )


class DefinitionResponse(BaseModel):
    """Response model for definition operations."""
    definition_id: str
    name: str
    description: Optional[str]
    trigger_key: str
    conditions: List[Dict[str, Any]]
    actions: List[Dict[str, Any]]
    priority: int
    enabled: bool
    valid_from: Optional[datetime]
    valid_until: Optional[datetime]
    execution_count: int
    last_executed_at: Optional[datetime]
    created_at: datetime
    updated_at: Optional[datetime]
    created_by: Optional[str]

    @classmethod
    def from_definition(cls, definition: Definition) -> "DefinitionResponse":
        return cls(**definition.to_dict())


class DefinitionListResponse(BaseModel):
    """Response model for definition list."""
    definitions: List[DefinitionResponse]
    total: int


class EnabledUpdateRequest(BaseModel):
    """Request model for toggling a definition."""
    enabled: bool


class TriggerRequest(BaseModel):
    """Domain event handed to the engine."""
    payload: Dict[str, Any] = Field(default_factory=dict, description="Entity payload")
    triggered_by: Optional[str] = Field(None, description="Reference to the entity or event")


class ExecutionSummaryResponse(BaseModel):
    definition_id: str
    definition_name: str
    status: ExecutionStatus
    duration_ms: float


class TriggerResponse(BaseModel):
    """Aggregate result of a trigger invocation."""
    trigger_key: str
    results: List[ExecutionSummaryResponse]


class ManualRunRequest(BaseModel):
    """Manual test run of a single definition."""
    payload: Dict[str, Any] = Field(default_factory=dict, description="Sample entity payload")


class ActionResultResponse(BaseModel):
    action_type: str
    status: ActionStatus
    error: Optional[str] = None
    output: Any = None


class ManualRunResponse(BaseModel):
    """Full trace of a manual test run."""
    definition_id: str
    definition_name: str
    status: ExecutionStatus
    conditions_met: bool
    action_results: List[ActionResultResponse]
    logs: List[str]
    error: Optional[str] = None
    duration_ms: float
    write_errors: List[str] = Field(default_factory=list)

    @classmethod
    def from_outcome(cls, outcome: EvaluationOutcome) -> "ManualRunResponse":
        return cls(
            definition_id=outcome.definition_id,
            definition_name=outcome.definition_name,
            status=outcome.status,
            conditions_met=outcome.conditions_met,
            action_results=[ActionResultResponse(**r.to_dict()) for r in outcome.action_results],
            logs=list(outcome.logs),
            error=outcome.error,
            duration_ms=outcome.duration_ms,
            write_errors=list(outcome.write_errors),
        )


class ExecutionListResponse(BaseModel):
    executions: List[Dict[str, Any]]
    total: int
