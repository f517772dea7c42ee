"""
Action Graph

Immutable snapshot of a workflow's action tree.

Actions reference their parent through parent_action_id, so the store can
hold anything, including cycles and parents from another workflow. The
graph is therefore built into an arena keyed by action id and validated
before any execution begins:

- every parent must be an action of the same workflow
- no action may be its own ancestor (visited-set DFS over parent chains)

Siblings run in (order, insertion position) order. Insertion position is
the action's rank by id, so ties on `order` are deterministic.
"""

import logging
from typing import Any, Dict, Iterable, Iterator, List, Literal, Optional, Tuple

from pydantic import BaseModel, Field, ValidationError as PydanticValidationError, field_validator
from sqlalchemy.orm import Session

from .conditions import validate_condition
from .exceptions import (
    GraphCycleError,
    GraphValidationError,
    NotFoundError,
    ValidationError,
)
from ..models import Action, Workflow

logger = logging.getLogger(__name__)

DEFAULT_ACTION_TIMEOUT = 30.0


class ActionNode(BaseModel):
    """
    One action, frozen at trigger time.

    Later edits to the Action rows never reach a running execution.
    """

    id: int
    action_type: str = Field(..., min_length=1)
    config: Dict[str, Any] = Field(default_factory=dict)
    order: int = 0
    parent_id: Optional[int] = None
    condition: Optional[Dict[str, Any]] = None
    on_failure: Literal["abort", "continue"] = "abort"
    name: Optional[str] = None
    position: int = 0

    class Config:
        frozen = True
        extra = "forbid"

    @property
    def timeout(self) -> float:
        """Per-action timeout in seconds (action_config.timeout)"""
        value = self.config.get("timeout", DEFAULT_ACTION_TIMEOUT)
        try:
            timeout = float(value)
        except (TypeError, ValueError):
            return DEFAULT_ACTION_TIMEOUT
        return timeout if timeout > 0 else DEFAULT_ACTION_TIMEOUT

    @property
    def sort_key(self) -> Tuple[int, int]:
        return (self.order, self.position)

    @classmethod
    def from_model(cls, action: Action, position: int) -> "ActionNode":
        return cls(
            id=action.id,
            action_type=action.action_type,
            config=dict(action.action_config or {}),
            order=action.order or 0,
            parent_id=action.parent_action_id,
            condition=action.condition,
            on_failure=action.on_failure or "abort",
            name=action.name,
            position=position,
        )


class ActionGraph:
    """
    Forest of ActionNodes stored as an arena.

    Example:
        >>> graph = load_action_graph(db, workflow_id=1)
        >>> [node.id for node in graph.roots()]
        [4, 2, 7]
        >>> [node.id for node in graph.walk()]   # depth-first pre-order
        [4, 5, 2, 7]
    """

    def __init__(
        self,
        nodes: Dict[int, ActionNode],
        root_ids: Tuple[int, ...],
        child_ids: Dict[int, Tuple[int, ...]],
        workflow_id: Optional[int] = None,
    ):
        self._nodes = nodes
        self._root_ids = root_ids
        self._child_ids = child_ids
        self.workflow_id = workflow_id

    def __len__(self) -> int:
        return len(self._nodes)

    def __contains__(self, action_id: int) -> bool:
        return action_id in self._nodes

    def get(self, action_id: int) -> ActionNode:
        return self._nodes[action_id]

    def roots(self) -> List[ActionNode]:
        return [self._nodes[i] for i in self._root_ids]

    def children(self, action_id: int) -> List[ActionNode]:
        return [self._nodes[i] for i in self._child_ids.get(action_id, ())]

    def subtree(self, action_id: int) -> List[ActionNode]:
        """The action and all of its descendants, pre-order"""
        return list(self._walk_from([action_id]))

    def walk(self) -> Iterator[ActionNode]:
        """Depth-first pre-order over the whole forest"""
        return self._walk_from(self._root_ids)

    def _walk_from(self, ids: Iterable[int]) -> Iterator[ActionNode]:
        stack = list(reversed(list(ids)))
        while stack:
            node = self._nodes[stack.pop()]
            yield node
            stack.extend(reversed(self._child_ids.get(node.id, ())))


def build_action_graph(nodes: Iterable[ActionNode], workflow_id: Optional[int] = None) -> ActionGraph:
    """
    Validate nodes and assemble the arena.

    Raises:
        GraphValidationError: duplicate ids or a parent outside the node set
        GraphCycleError: a parent chain loops back on itself
    """
    by_id: Dict[int, ActionNode] = {}
    for node in nodes:
        if node.id in by_id:
            raise GraphValidationError(f"Duplicate action id: {node.id}")
        by_id[node.id] = node

    for node in by_id.values():
        if node.parent_id is not None and node.parent_id not in by_id:
            raise GraphValidationError(
                f"Action {node.id} references parent {node.parent_id}, "
                f"which is not an action of this workflow"
            )

    _check_acyclic(by_id)

    roots: List[ActionNode] = []
    children: Dict[int, List[ActionNode]] = {}
    for node in by_id.values():
        if node.parent_id is None:
            roots.append(node)
        else:
            children.setdefault(node.parent_id, []).append(node)

    root_ids = tuple(n.id for n in sorted(roots, key=lambda n: n.sort_key))
    child_ids = {
        parent_id: tuple(n.id for n in sorted(kids, key=lambda n: n.sort_key))
        for parent_id, kids in children.items()
    }

    return ActionGraph(by_id, root_ids, child_ids, workflow_id=workflow_id)


def _check_acyclic(by_id: Dict[int, ActionNode]) -> None:
    """Follow every parent chain once; a node seen twice on one chain is a cycle."""
    verified = set()

    for start_id in by_id:
        path: List[int] = []
        on_path = set()
        current: Optional[int] = start_id

        while current is not None and current not in verified:
            if current in on_path:
                cycle = path[path.index(current):] + [current]
                raise GraphCycleError(
                    f"Action parent chain is cyclic: {' -> '.join(str(i) for i in cycle)}",
                    cycle=cycle,
                )
            on_path.add(current)
            path.append(current)
            current = by_id[current].parent_id

        verified.update(path)


def load_action_graph(db: Session, workflow_id: int) -> ActionGraph:
    """Read a workflow's actions and build its snapshot"""
    actions = (
        db.query(Action)
        .filter(Action.workflow_id == workflow_id)
        .order_by(Action.id)
        .all()
    )
    nodes = [ActionNode.from_model(action, position) for position, action in enumerate(actions)]
    graph = build_action_graph(nodes, workflow_id=workflow_id)

    logger.debug(f"Loaded action graph for workflow {workflow_id}: {len(graph)} actions")
    return graph


# ============================================================================
# ATOMIC REPLACEMENT
# ============================================================================

class ActionSpec(BaseModel):
    """
    Client-side description of one action in a replacement set.

    Actions refer to each other through `key`/`parent_key` because ids do
    not exist yet.
    """

    key: str = Field(..., min_length=1)
    parent_key: Optional[str] = None
    action_type: str = Field(..., min_length=1)
    action_config: Dict[str, Any] = Field(default_factory=dict)
    order: int = 0
    condition: Optional[Dict[str, Any]] = None
    on_failure: Literal["abort", "continue"] = "abort"
    name: Optional[str] = None

    class Config:
        extra = "forbid"

    @field_validator("condition")
    @classmethod
    def validate_condition_shape(cls, v):
        if v:
            try:
                validate_condition(v)
            except ValidationError as e:
                raise ValueError(e.message)
        return v


def _parse_specs(specs: List[Any]) -> List[ActionSpec]:
    parsed = []
    for index, raw in enumerate(specs):
        try:
            parsed.append(raw if isinstance(raw, ActionSpec) else ActionSpec(**raw))
        except PydanticValidationError as e:
            raise ValidationError(f"Invalid action at index {index}: {e.errors()[0]['msg']}")
        except TypeError:
            raise ValidationError(f"Invalid action at index {index}: expected an object")
    return parsed


def _preview_graph(specs: List[ActionSpec]) -> ActionGraph:
    """Build the graph the specs would produce, using positional ids"""
    ids: Dict[str, int] = {}
    for position, spec in enumerate(specs):
        if spec.key in ids:
            raise GraphValidationError(f"Duplicate action key: '{spec.key}'")
        ids[spec.key] = position + 1

    nodes = []
    for position, spec in enumerate(specs):
        if spec.parent_key is not None and spec.parent_key not in ids:
            raise GraphValidationError(
                f"Action '{spec.key}' references unknown parent '{spec.parent_key}'"
            )
        nodes.append(ActionNode(
            id=ids[spec.key],
            action_type=spec.action_type,
            config=spec.action_config,
            order=spec.order,
            parent_id=ids.get(spec.parent_key) if spec.parent_key is not None else None,
            condition=spec.condition,
            on_failure=spec.on_failure,
            name=spec.name,
            position=position,
        ))
    return build_action_graph(nodes)


def _link_parents(created: Dict[str, Action], specs: List[ActionSpec]) -> None:
    for spec in specs:
        if spec.parent_key is not None:
            created[spec.key].parent_action_id = created[spec.parent_key].id


def replace_workflow_actions(db: Session, workflow_id: int, specs: List[Any]) -> List[Action]:
    """
    Replace a workflow's entire action set, all or nothing.

    The new set is fully validated (shape, conditions, parent references,
    cycles) before anything is touched. Deletion of the old set and insertion
    of the new one share one transaction; on any error it is rolled back and
    the previous actions remain.

    Args:
        db: Database session
        workflow_id: Owning workflow
        specs: List of ActionSpec or dicts with the same fields

    Returns:
        The new Action rows in insertion order

    Raises:
        NotFoundError: unknown workflow
        ValidationError / GraphValidationError / GraphCycleError: invalid set
    """
    parsed = _parse_specs(specs)
    _preview_graph(parsed)

    workflow = db.query(Workflow).filter(Workflow.id == workflow_id).first()
    if not workflow:
        raise NotFoundError("Workflow", workflow_id)

    try:
        for action in list(workflow.actions):
            db.delete(action)
        db.flush()

        created: Dict[str, Action] = {}
        for spec in parsed:
            action = Action(
                workflow_id=workflow_id,
                name=spec.name,
                action_type=spec.action_type,
                action_config=spec.action_config,
                order=spec.order,
                condition=spec.condition,
                on_failure=spec.on_failure,
            )
            db.add(action)
            # Flush one at a time so ids follow insertion order
            db.flush()
            created[spec.key] = action

        _link_parents(created, parsed)
        db.commit()

    except Exception:
        db.rollback()
        logger.exception(f"Replacing actions of workflow {workflow_id} failed, rolled back")
        raise

    logger.info(
        f"Replaced actions of workflow {workflow_id}",
        extra={"workflow_id": workflow_id, "action_count": len(parsed)},
    )
    return [created[spec.key] for spec in parsed]
