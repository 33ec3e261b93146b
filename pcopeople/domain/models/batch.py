"""Domain models for batch execution.

A batch is an ordered list of `BatchOperation`s. Operations may point at the
results of earlier operations either with a typed `Ref` placed directly in
their data, or with a textual back-reference token such as ``"$0.id"``.
"""

from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, List, Mapping, Optional, Tuple, Union


@dataclass(frozen=True)
class Ref:
    """Typed reference to the result of another operation in the same batch.

    Args:
        target: Positional index of the referenced operation, or its id.
        path: Dotted path into the referenced result (``"id"`` for its id).
    """
    target: Union[int, str]
    path: str = "id"

    @property
    def token(self) -> str:
        """Textual form, used when the reference cannot be resolved."""
        return f"${self.target}.{self.path}"

    def __str__(self) -> str:
        return self.token


@dataclass(frozen=True)
class OperationKind:
    """Entry key of the batch dispatch table."""
    resource: str  # "person", "email", "phone_number"
    verb: str      # "create", "update", "delete"

    def __str__(self) -> str:
        return f"{self.verb}_{self.resource}"


@dataclass
class BatchOperation:
    """One unit of work supplied by the caller."""
    type: str
    data: Any = None
    id: Optional[str] = None
    endpoint: Optional[str] = None
    dependencies: List[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "BatchOperation":
        """Builds an operation from its JSON representation (e.g. a batch file)."""
        if "type" not in payload:
            raise ValueError(f"Batch operation is missing 'type': {dict(payload)}")
        dependencies = payload.get("dependencies") or []
        return cls(
            type=str(payload["type"]),
            data=payload.get("data"),
            id=str(payload["id"]) if payload.get("id") is not None else None,
            endpoint=payload.get("endpoint"),
            dependencies=[str(dep) for dep in dependencies],
        )


@dataclass
class ResolvedBatchOperation:
    """An operation after validation, enriched with its dispatch key and dependencies."""
    operation: BatchOperation
    index: int
    id: str
    kind: OperationKind
    dependencies: List[str] = field(default_factory=list)
    dependency_indices: List[int] = field(default_factory=list)
    # Raw (possibly referencing) path ids taken from the endpoint or data
    path_ids: Tuple[Any, ...] = ()
    # Operation data without the path id keys
    payload: Any = None
    # Filled in just before execution
    resolved_data: Any = None
    resolved_path_ids: Tuple[Any, ...] = ()
    resolved_endpoint: Optional[str] = None


@dataclass
class BatchResult:
    """Outcome of exactly one operation."""
    index: int
    operation: BatchOperation
    success: bool
    data: Any = None
    error: Optional[BaseException] = None


@dataclass
class BatchSummary:
    """Aggregate outcome of a batch."""
    total: int
    successful: int
    failed: int
    success_rate: float
    duration_ms: float
    results: List[BatchResult] = field(default_factory=list)


OperationCallback = Callable[[BatchResult], Optional[Awaitable[None]]]
BatchCallback = Callable[[List[BatchResult]], Optional[Awaitable[None]]]


@dataclass
class BatchOptions:
    """Execution options for `BatchExecutor.execute`."""
    continue_on_error: bool = True
    max_concurrency: int = 5
    enable_rollback: bool = False
    on_operation_complete: Optional[OperationCallback] = None
    on_batch_complete: Optional[BatchCallback] = None

    def __post_init__(self) -> None:
        if self.max_concurrency < 1:
            raise ValueError(f"max_concurrency must be >= 1, got {self.max_concurrency}")


