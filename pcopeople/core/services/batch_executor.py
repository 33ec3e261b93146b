"""Core service for executing batches of dependent operations.

A batch is validated as a whole before anything is sent: every operation is
mapped onto a closed `(resource, verb)` dispatch table, and its dependencies
(explicit ids plus references to earlier results) are checked for unknown
targets and cycles. Execution then runs one task per operation. A task waits
for its dependencies to settle, takes a concurrency permit, resolves its
references against the settled results and calls its handler.
"""

import asyncio
import logging
import re
import time
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Sequence, Set, Tuple, Union

from pcopeople.core.exceptions import BatchValidationError, UnsupportedOperationError
from pcopeople.domain.interfaces.people_directory import PeopleDirectory
from pcopeople.domain.models.batch import (
    BatchOperation,
    BatchOptions,
    BatchResult,
    BatchSummary,
    OperationKind,
    Ref,
    ResolvedBatchOperation,
)
from pcopeople.domain.models.resources import Resource

logger = logging.getLogger(__name__)

PERSON = "person"
EMAIL = "email"
PHONE_NUMBER = "phone_number"

CREATE = "create"
UPDATE = "update"
DELETE = "delete"

INDEX_DEPENDENCY_PREFIX = "$index_"

# `$<index>.<dotted.path>`; the path stops at the first non-word character
REFERENCE_TOKEN = re.compile(r"\$(\d+)((?:\.\w+)+)")

_CAMEL_BOUNDARY = re.compile(r"(?<!^)(?=[A-Z])")

_VERB_ALIASES = {"create": CREATE, "add": CREATE, "update": UPDATE, "delete": DELETE, "remove": DELETE}

_RESOURCE_ALIASES = {
    "person": PERSON,
    "people": PERSON,
    "email": EMAIL,
    "emails": EMAIL,
    "phone": PHONE_NUMBER,
    "phone_number": PHONE_NUMBER,
    "phone_numbers": PHONE_NUMBER,
}

_ENDPOINT_COLLECTIONS = {"emails": EMAIL, "phone_numbers": PHONE_NUMBER}

# Data keys that carry path ids instead of attributes
_PERSON_ID_KEYS = ("person_id",)
_CHILD_ID_KEYS = {
    PERSON: ("person_id", "id"),
    EMAIL: ("email_id", "id"),
    PHONE_NUMBER: ("phone_number_id", "phone_id", "id"),
}


# --- Dispatch table ---

Handler = Callable[[PeopleDirectory, Tuple[Any, ...], Any], Awaitable[Any]]


async def _create_person(people, ids, data):
    return await people.create(data or {})


async def _update_person(people, ids, data):
    return await people.update(ids[0], data or {})


async def _delete_person(people, ids, data):
    return await people.delete(ids[0])


async def _create_email(people, ids, data):
    return await people.add_email(ids[0], data or {})


async def _update_email(people, ids, data):
    return await people.update_email(ids[0], ids[1], data or {})


async def _delete_email(people, ids, data):
    return await people.delete_email(ids[0], ids[1])


async def _create_phone_number(people, ids, data):
    return await people.add_phone_number(ids[0], data or {})


async def _update_phone_number(people, ids, data):
    return await people.update_phone_number(ids[0], ids[1], data or {})


async def _delete_phone_number(people, ids, data):
    return await people.delete_phone_number(ids[0], ids[1])


DISPATCH_TABLE: Dict[OperationKind, Handler] = {
    OperationKind(PERSON, CREATE): _create_person,
    OperationKind(PERSON, UPDATE): _update_person,
    OperationKind(PERSON, DELETE): _delete_person,
    OperationKind(EMAIL, CREATE): _create_email,
    OperationKind(EMAIL, UPDATE): _update_email,
    OperationKind(EMAIL, DELETE): _delete_email,
    OperationKind(PHONE_NUMBER, CREATE): _create_phone_number,
    OperationKind(PHONE_NUMBER, UPDATE): _update_phone_number,
    OperationKind(PHONE_NUMBER, DELETE): _delete_phone_number,
}

# Number of path ids each resource needs (person id, then the child id)
_PATH_ARITY = {
    OperationKind(PERSON, CREATE): 0,
    OperationKind(PERSON, UPDATE): 1,
    OperationKind(PERSON, DELETE): 1,
    OperationKind(EMAIL, CREATE): 1,
    OperationKind(EMAIL, UPDATE): 2,
    OperationKind(EMAIL, DELETE): 2,
    OperationKind(PHONE_NUMBER, CREATE): 1,
    OperationKind(PHONE_NUMBER, UPDATE): 2,
    OperationKind(PHONE_NUMBER, DELETE): 2,
}


# --- Operation kinds ---

def _snake_case(name: str) -> str:
    return _CAMEL_BOUNDARY.sub("_", name).lower()


def _parse_verb_resource(name: str, default_resource: Optional[str] = None) -> Optional[OperationKind]:
    """Parses ``create_person``, ``add_email``, ``delete`` (with a default resource)."""
    verb_part, _, resource_part = _snake_case(name).partition("_")
    verb = _VERB_ALIASES.get(verb_part)
    if verb is None:
        return None
    resource = _RESOURCE_ALIASES.get(resource_part) if resource_part else default_resource
    if resource is None:
        return None
    return OperationKind(resource, verb)


def _parse_endpoint(verb: str, endpoint: str) -> Tuple[OperationKind, Tuple[str, ...]]:
    """Maps a REST endpoint onto an operation kind and its path ids."""
    segments = [s for s in endpoint.split("?", 1)[0].split("/") if s]
    unsupported = UnsupportedOperationError(f"Unsupported endpoint for batch operation: {endpoint}")
    if not segments or segments[0] != "people" or len(segments) > 4:
        raise unsupported

    if len(segments) <= 2:
        kind = OperationKind(PERSON, verb)
        ids = tuple(segments[1:])
    else:
        resource = _ENDPOINT_COLLECTIONS.get(segments[2])
        if resource is None:
            raise unsupported
        kind = OperationKind(resource, verb)
        ids = (segments[1],) + tuple(segments[3:])

    if _PATH_ARITY.get(kind) != len(ids):
        raise unsupported
    return kind, ids


def normalize_operation_kind(operation: BatchOperation) -> Tuple[OperationKind, Tuple[str, ...]]:
    """Returns the dispatch key of an operation and the ids found in its endpoint.

    Raises:
        UnsupportedOperationError: If no dispatch entry matches.
    """
    op_type = operation.type.strip()

    if "." in op_type:
        module, _, method = op_type.partition(".")
        kind = _parse_verb_resource(method, default_resource=_RESOURCE_ALIASES.get(module.lower()))
    elif operation.endpoint and _VERB_ALIASES.get(op_type.lower()) in (CREATE, UPDATE, DELETE) and "_" not in op_type:
        return _parse_endpoint(_VERB_ALIASES[op_type.lower()], operation.endpoint)
    else:
        kind = _parse_verb_resource(op_type)

    if kind is None or kind not in DISPATCH_TABLE:
        raise UnsupportedOperationError(f"Unsupported batch operation: {operation.type}")

    ids: Tuple[str, ...] = ()
    if operation.endpoint:
        endpoint_kind, ids = _parse_endpoint(kind.verb, operation.endpoint)
        if endpoint_kind != kind:
            raise UnsupportedOperationError(
                f"Endpoint {operation.endpoint} does not match operation type {operation.type}"
            )
    return kind, ids


# --- References ---

def _iter_references(value: Any):
    """Yields every `Ref` and `(index, path)` token found in a value."""
    if isinstance(value, Ref):
        yield value
    elif isinstance(value, str):
        for match in REFERENCE_TOKEN.finditer(value):
            yield Ref(int(match.group(1)), match.group(2)[1:])
    elif isinstance(value, Resource):
        yield from _iter_references(value.attributes)
        yield from _iter_references(value.relationships)
    elif isinstance(value, Mapping):
        for item in value.values():
            yield from _iter_references(item)
    elif isinstance(value, (list, tuple)):
        for item in value:
            yield from _iter_references(item)


_MISSING = object()


def _resource_view(resource: Resource) -> Dict[str, Any]:
    return {
        "id": resource.id,
        "type": resource.type,
        "attributes": resource.attributes,
        "relationships": resource.relationships,
    }


def extract_path(data: Any, path: str) -> Any:
    """Walks a dotted path into an operation result.

    A `Resource` is viewed as ``{"id", "type", "attributes", "relationships"}``
    and bare attribute names fall back to its attributes. Returns `_MISSING`
    when the path does not exist.
    """
    node = data
    for part in path.split("."):
        if isinstance(node, Resource):
            node = _resource_view(node)
        if isinstance(node, Mapping):
            if part in node and node[part] is not None:
                node = node[part]
            elif isinstance(node.get("attributes"), Mapping) and part in node["attributes"]:
                node = node["attributes"][part]
            elif isinstance(node.get("data"), (Mapping, Resource)):
                # Raw JSON:API documents keep the resource under "data"
                node = extract_path(node["data"], part)
                if node is _MISSING:
                    return _MISSING
            else:
                return _MISSING
        elif isinstance(node, (list, tuple)) and part.isdigit() and int(part) < len(node):
            node = node[int(part)]
        else:
            return _MISSING
    return node


class _ReferenceResolver:
    """Substitutes references with values taken from settled results."""

    def __init__(self, results: Mapping[int, BatchResult], id_to_index: Mapping[str, int]):
        self.results = results
        self.id_to_index = id_to_index

    def _lookup(self, target: Union[int, str], path: str) -> Any:
        index = target if isinstance(target, int) else self.id_to_index.get(str(target))
        result = self.results.get(index) if index is not None else None
        if result is None or not result.success:
            return _MISSING
        return extract_path(result.data, path)

    def resolve(self, value: Any) -> Any:
        if isinstance(value, Ref):
            found = self._lookup(value.target, value.path)
            return value.token if found is _MISSING else found
        if isinstance(value, str):
            return self._resolve_string(value)
        if isinstance(value, Mapping):
            return {key: self.resolve(item) for key, item in value.items()}
        if isinstance(value, list):
            return [self.resolve(item) for item in value]
        if isinstance(value, tuple):
            return tuple(self.resolve(item) for item in value)
        return value

    def _resolve_string(self, text: str) -> str:
        def substitute(match: "re.Match") -> str:
            found = self._lookup(int(match.group(1)), match.group(2)[1:])
            return match.group(0) if found is _MISSING else str(found)

        return REFERENCE_TOKEN.sub(substitute, text)


# --- Executor ---

class BatchExecutor:
    """Runs batches of people/email/phone operations against a `PeopleDirectory`."""

    def __init__(self, people: PeopleDirectory):
        self.people = people
        self._callback_tasks: Set[asyncio.Task] = set()

    # --- Validation ---

    def validate(self, operations: Sequence[Union[BatchOperation, Mapping[str, Any]]]) -> List[ResolvedBatchOperation]:
        """Checks a batch and computes the dispatch key and dependencies of each operation.

        Raises:
            UnsupportedOperationError: If an operation matches no dispatch entry.
            BatchValidationError: On duplicate ids, unknown dependencies or cycles.
        """
        ops = [op if isinstance(op, BatchOperation) else BatchOperation.from_dict(op) for op in operations]

        id_to_index: Dict[str, int] = {}
        for index, op in enumerate(ops):
            op_id = op.id or f"op_{index}"
            if op_id in id_to_index:
                raise BatchValidationError(f"Duplicate operation id '{op_id}'", operation_id=op_id)
            id_to_index[op_id] = index

        resolved: List[ResolvedBatchOperation] = []
        for index, op in enumerate(ops):
            op_id = op.id or f"op_{index}"
            kind, endpoint_ids = normalize_operation_kind(op)
            payload = dict(op.data) if isinstance(op.data, Mapping) else op.data

            dependencies, dependency_indices = self._collect_dependencies(
                op, op_id, index, payload, endpoint_ids, id_to_index
            )
            path_ids = self._collect_path_ids(op_id, kind, endpoint_ids, payload, dependency_indices, resolved)
            resolved.append(
                ResolvedBatchOperation(
                    operation=op,
                    index=index,
                    id=op_id,
                    kind=kind,
                    dependencies=dependencies,
                    dependency_indices=dependency_indices,
                    path_ids=path_ids,
                    payload=payload,
                )
            )

        self._check_cycles(resolved)
        return resolved

    @staticmethod
    def _collect_dependencies(
        op: BatchOperation,
        op_id: str,
        index: int,
        payload: Any,
        endpoint_ids: Tuple[str, ...],
        id_to_index: Mapping[str, int],
    ) -> Tuple[List[str], List[int]]:
        dependencies: List[str] = []
        indices: List[int] = []

        def add(label: str, dep_index: int) -> None:
            if label not in dependencies:
                dependencies.append(label)
            if dep_index not in indices:
                indices.append(dep_index)

        for dep in op.dependencies:
            if dep in id_to_index:
                add(dep, id_to_index[dep])
            elif dep.startswith(INDEX_DEPENDENCY_PREFIX) and dep[len(INDEX_DEPENDENCY_PREFIX):].isdigit():
                dep_index = int(dep[len(INDEX_DEPENDENCY_PREFIX):])
                if dep_index >= len(id_to_index):
                    raise BatchValidationError(
                        f"Operation '{op_id}' depends on missing index {dep_index}", operation_id=op_id
                    )
                add(dep, dep_index)
            else:
                raise BatchValidationError(
                    f"Operation '{op_id}' depends on unknown operation '{dep}'", operation_id=op_id
                )

        for ref in _iter_references([payload, op.endpoint, list(endpoint_ids)]):
            if isinstance(ref.target, int) or str(ref.target).isdigit():
                ref_index = int(ref.target)
                if ref_index < index:
                    add(f"{INDEX_DEPENDENCY_PREFIX}{ref_index}", ref_index)
            elif str(ref.target) in id_to_index:
                add(str(ref.target), id_to_index[str(ref.target)])
            else:
                raise BatchValidationError(
                    f"Operation '{op_id}' references unknown operation '{ref.target}'", operation_id=op_id
                )
        return dependencies, indices

    @staticmethod
    def _collect_path_ids(
        op_id: str,
        kind: OperationKind,
        endpoint_ids: Tuple[str, ...],
        payload: Any,
        dependency_indices: List[int],
        earlier: List[ResolvedBatchOperation],
    ) -> Tuple[Any, ...]:
        arity = _PATH_ARITY[kind]
        if len(endpoint_ids) == arity:
            return endpoint_ids

        data = payload if isinstance(payload, dict) else {}

        def pop_first(keys: Tuple[str, ...]) -> Any:
            for key in keys:
                if data.get(key) is not None:
                    return data.pop(key)
            return None

        if kind.resource == PERSON:
            person_id = pop_first(_CHILD_ID_KEYS[PERSON]) if arity else None
            ids: Tuple[Any, ...] = (person_id,) if arity else ()
        else:
            person_id = pop_first(_PERSON_ID_KEYS)
            if person_id is None:
                # Fall back to the person created by a dependency
                for dep_index in reversed(dependency_indices):
                    if dep_index < len(earlier) and earlier[dep_index].kind == OperationKind(PERSON, CREATE):
                        person_id = Ref(dep_index, "id")
                        break
            ids = (person_id,)
            if arity == 2:
                ids += (pop_first(_CHILD_ID_KEYS[kind.resource]),)

        if any(value is None for value in ids):
            raise BatchValidationError(
                f"Operation '{op_id}' ({kind}) is missing a required id", operation_id=op_id
            )
        return ids

    @staticmethod
    def _check_cycles(operations: List[ResolvedBatchOperation]) -> None:
        visiting, done = set(), set()

        def visit(index: int) -> None:
            if index in done:
                return
            if index in visiting:
                op_id = operations[index].id
                raise BatchValidationError(f"Dependency cycle involving operation '{op_id}'", operation_id=op_id)
            visiting.add(index)
            for dep in operations[index].dependency_indices:
                visit(dep)
            visiting.discard(index)
            done.add(index)

        for op in operations:
            visit(op.index)

    # --- Execution ---

    async def execute(
        self,
        operations: Sequence[Union[BatchOperation, Mapping[str, Any]]],
        options: Optional[BatchOptions] = None,
    ) -> BatchSummary:
        """Executes a batch.

        Args:
            operations: Operations in positional order (dataclasses or dicts).
            options: Execution options.

        Returns:
            The summary, with one result per operation ordered by position.

        Raises:
            UnsupportedOperationError, BatchValidationError: Before any request
                is sent, if the batch is invalid.
            Exception: The first operation failure when `continue_on_error` is False.
                Operations not yet started are skipped, but the call waits for
                in-flight operations to settle (and for rollback, when enabled)
                before re-raising.
        """
        options = options or BatchOptions()
        resolved = self.validate(operations)
        start = time.perf_counter()
        logger.info(f"Executing batch of {len(resolved)} operations (max_concurrency={options.max_concurrency})")

        id_to_index = {op.id: op.index for op in resolved}
        results: Dict[int, BatchResult] = {}
        completion_order: List[int] = []
        semaphore = asyncio.Semaphore(options.max_concurrency)
        tasks: Dict[int, asyncio.Task] = {}
        first_failure = asyncio.Event()
        state = {"aborted": False, "error": None}

        async def run(op: ResolvedBatchOperation) -> None:
            dependency_tasks = [tasks[i] for i in op.dependency_indices]
            if dependency_tasks:
                await asyncio.wait(dependency_tasks)
            async with semaphore:
                if state["aborted"]:
                    return
                result = await self._run_operation(op, results, id_to_index)
            results[op.index] = result
            completion_order.append(op.index)
            self._notify(options.on_operation_complete, result)
            if not result.success and not options.continue_on_error and not state["aborted"]:
                state["aborted"] = True
                state["error"] = result.error
                first_failure.set()

        for op in resolved:
            tasks[op.index] = asyncio.create_task(run(op))

        if tasks:
            all_done = asyncio.gather(*tasks.values())
            failure_seen = asyncio.create_task(first_failure.wait())
            await asyncio.wait({all_done, failure_seen}, return_when=asyncio.FIRST_COMPLETED)
            failure_seen.cancel()

            if state["aborted"]:
                logger.error(f"Batch aborted after operation failure: {state['error']}")
                # Operations not yet started see the abort flag and skip
                await all_done
                if options.enable_rollback:
                    await self._rollback(resolved, results, completion_order)
                raise state["error"]
            await all_done

        ordered = [results[i] for i in sorted(results)]
        successful = sum(1 for r in ordered if r.success)
        summary = BatchSummary(
            total=len(resolved),
            successful=successful,
            failed=len(ordered) - successful,
            success_rate=successful / len(ordered) if ordered else 0.0,
            duration_ms=(time.perf_counter() - start) * 1000,
            results=ordered,
        )
        logger.info(
            f"Batch finished: {summary.successful}/{summary.total} succeeded in {summary.duration_ms:.0f}ms"
        )
        self._notify(options.on_batch_complete, ordered)
        return summary

    async def _run_operation(
        self,
        op: ResolvedBatchOperation,
        results: Mapping[int, BatchResult],
        id_to_index: Mapping[str, int],
    ) -> BatchResult:
        resolver = _ReferenceResolver(results, id_to_index)
        op.resolved_data = resolver.resolve(op.payload)
        op.resolved_path_ids = tuple(resolver.resolve(value) for value in op.path_ids)
        if op.operation.endpoint:
            op.resolved_endpoint = resolver.resolve(op.operation.endpoint)

        handler = DISPATCH_TABLE[op.kind]
        try:
            data = await handler(self.people, op.resolved_path_ids, op.resolved_data)
        except Exception as e:
            logger.warning(f"Batch operation '{op.id}' ({op.kind}) failed: {e}")
            return BatchResult(index=op.index, operation=op.operation, success=False, error=e)
        logger.debug(f"Batch operation '{op.id}' ({op.kind}) succeeded")
        return BatchResult(index=op.index, operation=op.operation, success=True, data=data)

    async def _rollback(
        self,
        operations: List[ResolvedBatchOperation],
        results: Mapping[int, BatchResult],
        completion_order: List[int],
    ) -> None:
        """Deletes what successful create operations made, newest first.

        Best effort only: updates and deletes are not reverted, and failures
        are logged rather than raised.
        """
        for index in reversed(completion_order):
            op = operations[index]
            result = results.get(index)
            if result is None or not result.success or op.kind.verb != CREATE:
                continue
            created_id = extract_path(result.data, "id")
            if created_id is _MISSING or created_id is None:
                logger.warning(f"Cannot roll back '{op.id}': result carries no id")
                continue
            ids = (created_id,) if op.kind.resource == PERSON else (op.resolved_path_ids[0], created_id)
            rollback_handler = DISPATCH_TABLE[OperationKind(op.kind.resource, DELETE)]
            try:
                await rollback_handler(self.people, ids, None)
                logger.info(f"Rolled back '{op.id}' ({op.kind}, id={created_id})")
            except Exception as e:
                logger.error(f"Failed to roll back '{op.id}' ({op.kind}): {e}")

    def _notify(self, callback: Optional[Callable[[Any], Any]], argument: Any) -> None:
        if callback is None:
            return
        try:
            outcome = callback(argument)
        except Exception as e:
            logger.error(f"Batch callback failed: {e}", exc_info=True)
            return
        if asyncio.iscoroutine(outcome):
            task = asyncio.ensure_future(outcome)
            self._callback_tasks.add(task)
            task.add_done_callback(self._on_callback_done)

    def _on_callback_done(self, task: asyncio.Task) -> None:
        self._callback_tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error(f"Async batch callback failed: {task.exception()}")
