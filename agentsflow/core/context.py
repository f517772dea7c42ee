"""
Execution Context

Shared state between the actions of one workflow run.

Layout:
    {
        "trigger": {...},             # payload the workflow was fired with
        "actions": {"12": {...}},     # output of each executed action, by id
        ...                           # dict outputs are also merged at top level
    }

Conditions and templates read from it with dot paths, e.g.
"trigger.lead.status" or "actions.12.status_code".
"""

import copy
from typing import Any, Dict, Optional

RESERVED_KEYS = ("trigger", "actions")


class ExecutionContext:
    """
    Context for a single execution.

    Example:
        >>> context = ExecutionContext({"lead": {"name": "Ana"}})
        >>> context.record_output(7, {"tag": "vip"})
        >>> context.get("trigger.lead.name")
        'Ana'
        >>> context.get("tag")
        'vip'
    """

    def __init__(self, trigger_payload: Optional[Dict[str, Any]] = None):
        self._context: Dict[str, Any] = {
            "trigger": copy.deepcopy(trigger_payload) if trigger_payload else {},
            "actions": {},
        }

    def get(self, path: str, default: Any = None) -> Any:
        """
        Resolve a dot path. Integer segments index into lists.
        Returns default when any segment is missing.
        """
        if not path:
            return default

        value: Any = self._context
        for part in path.split("."):
            if isinstance(value, dict):
                if part not in value:
                    return default
                value = value[part]
            elif isinstance(value, list) and part.lstrip("-").isdigit():
                index = int(part)
                if index >= len(value) or index < -len(value):
                    return default
                value = value[index]
            else:
                return default
        return value

    def has(self, path: str) -> bool:
        sentinel = object()
        return self.get(path, sentinel) is not sentinel

    def set(self, key: str, value: Any) -> None:
        if key in RESERVED_KEYS:
            raise ValueError(f"'{key}' is reserved in the execution context")
        self._context[key] = value

    def update(self, data: Dict[str, Any]) -> None:
        """Merge top-level keys; reserved keys are ignored"""
        for key, value in data.items():
            if key not in RESERVED_KEYS:
                self._context[key] = value

    def record_output(self, action_id: int, output: Any) -> None:
        """Store an action's output under actions.<id> and merge dict outputs"""
        self._context["actions"][str(action_id)] = output
        if isinstance(output, dict):
            self.update(output)

    def get_all(self) -> Dict[str, Any]:
        """Shallow copy. Use snapshot() for audit records."""
        return self._context.copy()

    def snapshot(self) -> Dict[str, Any]:
        """Deep copy of the context, safe to persist"""
        return copy.deepcopy(self._context)

    def __repr__(self) -> str:
        keys = [k for k in self._context if k not in RESERVED_KEYS]
        return f"<ExecutionContext(actions={len(self._context['actions'])}, keys={keys})>"
