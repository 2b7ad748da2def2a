from __future__ import annotations
import threading
from copy import deepcopy
from dataclasses import asdict, fields, replace
from typing import Callable, Generic, TypeVar

T = TypeVar("T")


class ThreadSafeConfig(Generic[T]):
    """
    Lock-guarded holder of a config dataclass.

    get() hands out a deep copy, so a fitting pass keeps a consistent snapshot
    while another thread edits the shared instance. An optional validator runs
    on every candidate value before it replaces the stored one.
    """

    def __init__(self, data_obj: T, validator: Callable[[T], None] | None = None):
        self._lock = threading.Lock()
        self._validator = validator
        if validator is not None:
            validator(data_obj)
        self._data = data_obj

    def get(self) -> T:
        with self._lock:
            return deepcopy(self._data)

    def set(self, field: str, value) -> None:
        self.update(**{field: value})

    def update(self, **kwargs) -> None:
        with self._lock:
            known = {f.name for f in fields(self._data)}
            unknown = set(kwargs) - known
            if unknown:
                raise AttributeError(f"unknown config field(s): {sorted(unknown)}")
            candidate = replace(self._data, **kwargs)
            if self._validator is not None:
                self._validator(candidate)
            self._data = candidate

    def get_field(self, field: str):
        with self._lock:
            return deepcopy(getattr(self._data, field))

    def get_raw(self) -> T:  # no copy, for saving
        with self._lock:
            return self._data

    def asdict(self) -> dict:
        with self._lock:
            return asdict(self._data)
