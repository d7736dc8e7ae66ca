"""
Validated, observable state store

A tree of named domains (plain dicts) addressed by dot paths such as
"requests.active.req_1" or "ui.current_provider".

Guarantees:
    - get() never hands out a reference into the tree (always a deep copy)
    - set() validates the new value first; a rejected value leaves the tree
      untouched and is reported as (False, reason), never raised
    - subscribers of the exact path and of '*' are notified synchronously
      with (new_value, old_value, path); a failing subscriber is logged and
      never blocks the others
    - update() is all-or-nothing through snapshot()/restore()

Example:
    store = StateStore({"ui": {"current_provider": "openai"}})
    store.subscribe("ui.current_provider", lambda new, old, path: print(old, "->", new))
    store.set("ui.current_provider", "ollama")        # prints: openai -> ollama
    store.set("ui.current_provider", "", nonEmpty)    # (False, "...") and unchanged
"""

from copy import deepcopy
from itertools import count
from typing import Any, Callable, Dict, List, Optional, Tuple

from .errors import KeyNotFound, ValidationError
from .log import LOG, LOG_error

WILDCARD = "*"

Subscriber = Callable[[Any, Any, str], None]
Validator = Callable[[Any], Any]
Result = Tuple[bool, Optional[str]]


def path_split(path: str) -> List[str]:
    if not isinstance(path, str) or not path:
        raise KeyNotFound(str(path))
    return path.split(".")


def validator_run(validator: Optional[Validator], value: Any) -> Result:
    """
    Run a validator against a value.

    A validator may return a bool, an (ok, reason) tuple, or raise
    ValidationError; all three forms are folded into (ok, reason). Any
    other exception a validator raises also rejects the value.
    """
    if validator is None:
        return True, None
    try:
        verdict = validator(value)
    except ValidationError as e:
        return False, str(e) or "Validation failed"
    except Exception as e:
        LOG(f"Validator raised {e!r}", level=2)
        return False, str(e) or type(e).__name__
    if isinstance(verdict, tuple):
        ok = bool(verdict[0])
        reason = verdict[1] if len(verdict) > 1 else None
        return ok, None if ok else (reason or "Validation failed")
    if verdict:
        return True, None
    return False, "Validation failed"


class StateStore:
    """
    Dot-path addressed state tree with validation and change notification

    Attributes:
        initial: Deep copy of the initial tree, restored by reset()
    """

    def __init__(self, initial_state: Optional[Dict[str, Any]] = None) -> None:
        self.initial: Dict[str, Any] = deepcopy(initial_state or {})
        self._state: Dict[str, Any] = deepcopy(self.initial)
        self._subscribers: Dict[str, List[Tuple[str, Subscriber]]] = {}
        self._ids = count(1)

    def get(self, path: Optional[str] = None) -> Any:
        """
        Deep copy of the value at ``path`` (the whole tree when None)

        Raises:
            KeyNotFound: If any key along the path is missing
        """
        if path is None:
            return deepcopy(self._state)
        return deepcopy(self.node_find(path))

    def has(self, path: str) -> bool:
        try:
            self.node_find(path)
        except KeyNotFound:
            return False
        return True

    def node_find(self, path: str) -> Any:
        current: Any = self._state
        for key in path_split(path):
            if not isinstance(current, dict) or key not in current:
                raise KeyNotFound(path, key)
            current = current[key]
        return current

    def set(self, path: str, value: Any, validator: Optional[Validator] = None) -> Result:
        """
        Validate and store ``value`` at ``path``

        Missing intermediate domains are created; a non-dict value along the
        path is never overwritten, the set is rejected instead.

        Args:
            path: Dot path
            value: New value (stored as a deep copy)
            validator: Optional check run against the new value only

        Returns:
            (True, None) on success, (False, reason) on rejection
        """
        if not isinstance(path, str) or not path:
            return False, "Path is required"

        ok, reason = validator_run(validator, value)
        if not ok:
            LOG(f"Rejected value for '{path}': {reason}", level=2)
            return False, reason

        keys = path.split(".")
        node: Any = self._state
        for depth, key in enumerate(keys[:-1], start=1):
            if key not in node:
                break
            node = node[key]
            if not isinstance(node, dict):
                return False, f"'{'.'.join(keys[:depth])}' is not a domain"

        parent = self._state
        for key in keys[:-1]:
            parent = parent.setdefault(key, {})

        old_value = parent.get(keys[-1])
        parent[keys[-1]] = deepcopy(value)
        LOG(f"Set '{path}'", level=3)
        self.subscribers_notify(path, value, old_value)
        return True, None

    def delete(self, path: str) -> bool:
        """Remove the value at ``path``; notifies subscribers with new_value None"""
        keys = path_split(path)
        try:
            parent = self.node_find(".".join(keys[:-1])) if len(keys) > 1 else self._state
        except KeyNotFound:
            return False
        if not isinstance(parent, dict) or keys[-1] not in parent:
            return False
        old_value = parent.pop(keys[-1])
        self.subscribers_notify(path, None, old_value)
        return True

    def update(self, updates: Dict[str, Any], validator: Optional[Validator] = None) -> Result:
        """
        Apply several sets as one all-or-nothing change

        Sets are applied in mapping order. The first rejection restores the
        tree from a snapshot taken before the first set.

        Returns:
            (True, None), or (False, "Failed to update '<path>': <reason>")
        """
        if not isinstance(updates, dict):
            return False, "Updates must be a mapping"
        snapshot = self.snapshot()
        for path, value in updates.items():
            try:
                ok, reason = self.set(path, value, validator)
            except Exception as e:
                ok, reason = False, str(e) or type(e).__name__
            if not ok:
                self.restore(snapshot)
                return False, f"Failed to update '{path}': {reason}"
        return True, None

    def snapshot(self) -> Dict[str, Any]:
        """Deep copy of the whole tree"""
        return deepcopy(self._state)

    def restore(self, snapshot: Dict[str, Any]) -> Result:
        """Replace the tree with a deep copy of ``snapshot``; notifies '*'"""
        if not isinstance(snapshot, dict):
            return False, "Snapshot must be a mapping"
        old_state = self._state
        self._state = deepcopy(snapshot)
        self.subscribers_notify(WILDCARD, self._state, old_state)
        return True, None

    def subscribe(self, path: str, callback: Subscriber) -> Callable[[], bool]:
        """
        Call ``callback(new_value, old_value, path)`` after every change of
        ``path`` ('*' for every change).

        Returns:
            Callable that removes this subscription

        Raises:
            TypeError: If callback is not callable
        """
        if not callable(callback):
            raise TypeError("Subscriber callback must be callable")
        subscription_id = f"{path}_{next(self._ids)}"
        self._subscribers.setdefault(path, []).append((subscription_id, callback))
        return lambda: self.unsubscribe(subscription_id)

    def unsubscribe(self, subscription_id: str) -> bool:
        """Remove a subscription by id; False if it no longer exists"""
        for subscribers in self._subscribers.values():
            for index, (candidate, _) in enumerate(subscribers):
                if candidate == subscription_id:
                    del subscribers[index]
                    return True
        return False

    def subscribers_notify(self, path: str, new_value: Any, old_value: Any) -> None:
        # Snapshot the lists so subscribers may (un)subscribe while notified
        targets = list(self._subscribers.get(path, []))
        if path != WILDCARD:
            targets += list(self._subscribers.get(WILDCARD, []))
        for subscription_id, callback in targets:
            try:
                callback(deepcopy(new_value), old_value, path)
            except Exception as e:
                LOG_error(f"Subscriber '{subscription_id}' failed on '{path}': {e!r}")

    def reset(self) -> None:
        """Back to the initial tree; drops every subscription"""
        self._state = deepcopy(self.initial)
        self._subscribers = {}

    def debug(self) -> Dict[str, Any]:
        return {
            "state_keys": sorted(self._state),
            "subscriber_count": sum(len(subs) for subs in self._subscribers.values()),
        }
