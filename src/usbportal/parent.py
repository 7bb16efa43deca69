"""Parent-window identities handed to the broker so it can place its dialogs."""

from __future__ import annotations

from typing import Protocol, runtime_checkable


@runtime_checkable
class Parent(Protocol):
    """
    A window the request is made on behalf of.

    ``export`` may suspend (toolkits export handles asynchronously) and returns
    the opaque handle string sent to the broker. ``unexport`` is called once
    the request is over, whatever its outcome.
    """

    async def export(self) -> str: ...

    def unexport(self) -> None: ...


class StaticParent:
    """A parent whose handle is already known, e.g. ``"x11:1a00007"``."""

    def __init__(self, handle: str) -> None:
        self._handle = handle
        self.exported = False

    async def export(self) -> str:
        self.exported = True
        return self._handle

    def unexport(self) -> None:
        self.exported = False

    def __repr__(self) -> str:
        return f"StaticParent({self._handle!r})"


__all__ = ["Parent", "StaticParent"]
