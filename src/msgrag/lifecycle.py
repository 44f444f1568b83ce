"""Explicit component lifecycle: uninitialized -> ready -> closed."""

from __future__ import annotations

import enum

from msgrag.errors import NotInitialized


class LifecycleState(str, enum.Enum):
    UNINITIALIZED = "uninitialized"
    READY = "ready"
    CLOSED = "closed"


class Lifecycle:
    """Mixin tracking the lifecycle state of a component."""

    _state: LifecycleState = LifecycleState.UNINITIALIZED

    @property
    def state(self) -> LifecycleState:
        return self._state

    @property
    def is_ready(self) -> bool:
        return self._state is LifecycleState.READY

    def _mark_ready(self) -> None:
        if self._state is LifecycleState.CLOSED:
            raise NotInitialized(f"{type(self).__name__} is closed")
        self._state = LifecycleState.READY

    def _mark_closed(self) -> None:
        self._state = LifecycleState.CLOSED

    def _require_ready(self) -> None:
        if self._state is LifecycleState.READY:
            return
        if self._state is LifecycleState.CLOSED:
            raise NotInitialized(f"{type(self).__name__} is closed")
        raise NotInitialized(f"{type(self).__name__} is not initialized")
