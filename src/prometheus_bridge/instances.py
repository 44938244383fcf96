"""
Per data source instance cache.

:class:`InstanceManager` maps a data source id to the instance built from its
settings. Reads of an up-to-date entry take no lock. Construction is
serialised per data source, so concurrent callers for the same id and
settings version share a single instance. The host's ``updated`` stamp is the
only signal used to decide that an entry is stale; construction failures
leave nothing behind and are retried on the next call.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass
from datetime import datetime
from logging import LoggerAdapter
from typing import Callable, Dict, Generic, List, Optional, TypeVar

from .core.context import DataSourceInstanceSettings, PluginContext
from .core.logging import get_logger
from .errors import InstanceSettingsError

T = TypeVar("T")

InstanceFactory = Callable[[DataSourceInstanceSettings], T]


@dataclass(frozen=True, slots=True)
class CachedInstance(Generic[T]):
    instance: T
    updated: datetime


class InstanceManager(Generic[T]):
    """Typed, thread-safe cache of data source instances."""

    def __init__(self, factory: InstanceFactory[T], *, logger: Optional[LoggerAdapter] = None) -> None:
        self._factory = factory
        self._entries: Dict[int, CachedInstance[T]] = {}
        self._locks: Dict[int, threading.Lock] = {}
        self._locks_guard = threading.Lock()
        self.logger = logger or get_logger(__name__)

    def get(self, plugin_context: PluginContext) -> T:
        """
        Return the instance for the context's data source, building it if needed.

        Raises :class:`InstanceSettingsError` when the context carries no data
        source settings; factory errors propagate unchanged.
        """

        settings = plugin_context.datasource_instance_settings
        if settings is None:
            raise InstanceSettingsError("plugin context carries no data source instance settings")

        entry = self._entries.get(settings.id)
        if entry is not None and not self._needs_update(entry, settings):
            return entry.instance

        with self._lock_for(settings.id):
            entry = self._entries.get(settings.id)
            if entry is not None and not self._needs_update(entry, settings):
                self.logger.debug("Instance built by concurrent caller", extra={"datasource_id": settings.id, "cache": "hit"})
                return entry.instance

            self.logger.debug(
                "Building data source instance",
                extra={"datasource_id": settings.id, "cache": "stale" if entry is not None else "miss"},
            )
            instance = self._factory(settings)
            self._entries[settings.id] = CachedInstance(instance=instance, updated=settings.updated)
            return instance

    def peek(self, datasource_id: int) -> Optional[T]:
        """Return the cached instance without building or validating it."""

        entry = self._entries.get(datasource_id)
        return entry.instance if entry is not None else None

    def drain(self) -> List[T]:
        """Forget every cached instance and return them so the caller can release them."""

        with self._locks_guard:
            entries = list(self._entries.values())
            self._entries.clear()
        return [entry.instance for entry in entries]

    def __len__(self) -> int:
        return len(self._entries)

    @staticmethod
    def _needs_update(entry: CachedInstance[T], settings: DataSourceInstanceSettings) -> bool:
        return entry.updated != settings.updated

    def _lock_for(self, datasource_id: int) -> threading.Lock:
        with self._locks_guard:
            lock = self._locks.get(datasource_id)
            if lock is None:
                lock = self._locks[datasource_id] = threading.Lock()
            return lock
