"""Principal attribute stores."""
from __future__ import annotations

import asyncio
from typing import Iterable, Mapping, Optional, Protocol


class AttributeStore(Protocol):
    """String key/value attributes keyed by principal id."""

    async def get_attribute(self, principal_id: str, key: str) -> Optional[str]:
        ...

    async def get_attributes(self, principal_id: str, keys: Iterable[str]) -> dict[str, str]:
        """Read several attributes in one step; missing keys are left out."""
        ...

    async def set_attribute(self, principal_id: str, key: str, value: str) -> None:
        ...

    async def remove_attribute(self, principal_id: str, key: str) -> None:
        ...

    async def set_attributes(self, principal_id: str, values: Mapping[str, str]) -> None:
        """Write several attributes as one unit."""
        ...

    async def remove_attributes(self, principal_id: str, keys: Iterable[str]) -> None:
        ...

    async def remove_attributes_if(self, principal_id: str, expected: Mapping[str, str]) -> bool:
        """Remove the keys of ``expected`` only if every one still holds its expected value.

        Returns whether the removal happened.
        """
        ...


class InMemoryAttributeStore:
    """Process-local store; entries live as long as the instance (session scope)."""

    def __init__(self) -> None:
        self._data: dict[str, dict[str, str]] = {}
        self._lock = asyncio.Lock()

    async def get_attribute(self, principal_id: str, key: str) -> Optional[str]:
        return self._data.get(principal_id, {}).get(key)

    async def get_attributes(self, principal_id: str, keys: Iterable[str]) -> dict[str, str]:
        attributes = self._data.get(principal_id, {})
        return {key: attributes[key] for key in keys if key in attributes}

    async def set_attribute(self, principal_id: str, key: str, value: str) -> None:
        await self.set_attributes(principal_id, {key: value})

    async def remove_attribute(self, principal_id: str, key: str) -> None:
        await self.remove_attributes(principal_id, (key,))

    async def set_attributes(self, principal_id: str, values: Mapping[str, str]) -> None:
        async with self._lock:
            self._data.setdefault(principal_id, {}).update(values)

    async def remove_attributes(self, principal_id: str, keys: Iterable[str]) -> None:
        async with self._lock:
            self._discard(principal_id, keys)

    async def remove_attributes_if(self, principal_id: str, expected: Mapping[str, str]) -> bool:
        async with self._lock:
            attributes = self._data.get(principal_id, {})
            if any(attributes.get(key) != value for key, value in expected.items()):
                return False
            self._discard(principal_id, expected.keys())
            return True

    def _discard(self, principal_id: str, keys: Iterable[str]) -> None:
        attributes = self._data.get(principal_id)
        if attributes is None:
            return
        for key in keys:
            attributes.pop(key, None)
        if not attributes:
            del self._data[principal_id]

    def clear(self) -> None:
        """Drop every entry, as a session teardown would."""
        self._data.clear()

    def snapshot(self, principal_id: str) -> dict[str, str]:
        return dict(self._data.get(principal_id, {}))
