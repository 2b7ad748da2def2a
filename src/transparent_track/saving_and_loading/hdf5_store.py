# saving_and_loading/hdf5_store.py
"""
Dataclass trees <-> HDF5.

Encoding markers:
- '__NONE__'      : None
- '__ndarray__'   : object-dtype numpy array (items stored one group each)
- '__dataclass__' : class name of a registered dataclass
- '__tuple__'     : tuple
- '__version__'   : file format version (root attribute)

Files are written to a temporary sibling and moved into place, so an aborted
write never leaves a truncated file at the target path.
"""
from __future__ import annotations
import os
import tempfile
from dataclasses import is_dataclass, fields
from os import PathLike
from typing import Any, Union

import h5py
import numpy as np

_NONE_MARKER = "__NONE__"
_ARRAY_MARKER = "__ndarray__"
_TUPLE_MARKER = "__tuple__"
_DATACLASS_MARKER = "__dataclass__"
_VERSION = "1.0"

# =============================================================================
# Dataclass registry
# =============================================================================

known_classes: dict[str, type] = {}


def register_dataclass(cls):
    """Class decorator: make a dataclass loadable by name."""
    if not is_dataclass(cls):
        raise TypeError(f"{cls.__name__} is not a dataclass")
    known_classes[cls.__name__] = cls
    return cls


# =============================================================================
# Encoding
# =============================================================================

def dataclass_to_hdf5_native_dict(obj: Any) -> Any:
    """Convert a dataclass tree into dicts, lists, arrays and scalars h5py can store."""
    if obj is None:
        return _NONE_MARKER
    if isinstance(obj, (bool, int, float, str)):
        return obj
    if isinstance(obj, np.generic):
        return obj.item()
    if isinstance(obj, np.ndarray):
        if obj.dtype == object:
            return {_ARRAY_MARKER: True, "items": [dataclass_to_hdf5_native_dict(x) for x in obj]}
        return obj
    if is_dataclass(obj):
        result = {_DATACLASS_MARKER: type(obj).__name__}
        for f in fields(obj):
            result[f.name] = dataclass_to_hdf5_native_dict(getattr(obj, f.name))
        return result
    if isinstance(obj, list):
        return [dataclass_to_hdf5_native_dict(x) for x in obj]
    if isinstance(obj, tuple):
        return {_TUPLE_MARKER: True, "items": [dataclass_to_hdf5_native_dict(x) for x in obj]}
    if isinstance(obj, dict):
        for k in obj:
            if not isinstance(k, str):
                raise TypeError(f"HDF5 keys must be strings. Got {type(k)}: {k}")
        return {k: dataclass_to_hdf5_native_dict(v) for k, v in obj.items()}
    raise TypeError(f"Unsupported type for HDF5-native conversion: {type(obj)}")


def _write_to_hdf5_group(h5group: h5py.Group, data: Any) -> None:
    if isinstance(data, dict):
        for marker in (_TUPLE_MARKER, _ARRAY_MARKER):
            if data.get(marker) is True:
                h5group.attrs[marker] = True
                items = h5group.create_group("items")
                for idx, item in enumerate(data["items"]):
                    _write_to_hdf5_group(items.create_group(str(idx)), item)
                return
        if _DATACLASS_MARKER in data:
            h5group.attrs[_DATACLASS_MARKER] = data[_DATACLASS_MARKER]
        for key, val in data.items():
            if key == _DATACLASS_MARKER:
                continue
            _write_to_hdf5_group(h5group.create_group(key), val)

    elif isinstance(data, list):
        if data and all(isinstance(x, (int, float, np.number)) and not isinstance(x, bool) for x in data):
            h5group.create_dataset("value", data=np.asarray(data))
        elif data and all(isinstance(x, str) for x in data):
            h5group.attrs["value"] = np.array(data, dtype=h5py.string_dtype())
        else:
            h5group.attrs["__list__"] = True
            for idx, item in enumerate(data):
                _write_to_hdf5_group(h5group.create_group(str(idx)), item)

    elif isinstance(data, np.ndarray):
        h5group.create_dataset("value", data=data)

    elif isinstance(data, (bool, int, float, str)):
        h5group.attrs["value"] = data

    else:
        raise TypeError(f"Cannot store unsupported type: {type(data)}")


def save_dict_to_hdf5(filepath: Union[str, PathLike], data_dict: Any) -> None:
    """Atomically write an encoded structure to filepath."""
    filepath = os.fspath(filepath)
    directory = os.path.dirname(os.path.abspath(filepath))
    fd, tmp = tempfile.mkstemp(prefix=".tmp_", suffix=".h5", dir=directory)
    os.close(fd)
    try:
        with h5py.File(tmp, "w") as f:
            f.attrs["__version__"] = _VERSION
            _write_to_hdf5_group(f, data_dict)
        os.replace(tmp, filepath)
    except BaseException:
        if os.path.exists(tmp):
            os.remove(tmp)
        raise


# =============================================================================
# Decoding
# =============================================================================

def _attr_value(value: Any) -> Any:
    if isinstance(value, bytes):
        return value.decode("utf-8")
    if isinstance(value, np.bool_):
        return bool(value)
    if isinstance(value, np.ndarray) and value.dtype == object:
        return [_attr_value(v) for v in value]
    if isinstance(value, np.generic):
        return value.item()
    return value


def _read_hdf5_group(h5group: h5py.Group) -> Any:
    for marker in (_TUPLE_MARKER, _ARRAY_MARKER):
        if h5group.attrs.get(marker):
            items = h5group["items"]
            return {marker: True, "items": [_read_hdf5_group(items[k]) for k in sorted(items.keys(), key=int)]}

    if "value" in h5group.attrs:
        return _attr_value(h5group.attrs["value"])

    if isinstance(h5group.get("value", None), h5py.Dataset):
        return h5group["value"][()]

    keys = list(h5group.keys())
    if h5group.attrs.get("__list__"):
        return [_read_hdf5_group(h5group[k]) for k in sorted(keys, key=int)]

    result = {k: _read_hdf5_group(h5group[k]) for k in keys}
    if _DATACLASS_MARKER in h5group.attrs:
        result[_DATACLASS_MARKER] = _attr_value(h5group.attrs[_DATACLASS_MARKER])
    return result


def load_dict_from_hdf5(filepath: Union[str, PathLike]) -> Any:
    with h5py.File(filepath, "r") as f:
        version = _attr_value(f.attrs.get("__version__", _VERSION))
        if version != _VERSION:
            raise ValueError(f"Unsupported HDF5 format version: {version}")
        return _read_hdf5_group(f)


def dict_to_dataclass_tree(data: Any, known: dict[str, type] | None = None) -> Any:
    """Rebuild registered dataclasses, tuples and None from a decoded structure."""
    resolved = known_classes if known is None else known

    if isinstance(data, str) and data == _NONE_MARKER:
        return None
    if isinstance(data, list):
        return [dict_to_dataclass_tree(item, resolved) for item in data]
    if isinstance(data, dict):
        if data.get(_ARRAY_MARKER) is True:
            out = np.empty(len(data["items"]), dtype=object)
            for i, item in enumerate(data["items"]):
                out[i] = dict_to_dataclass_tree(item, resolved)
            return out
        if data.get(_TUPLE_MARKER) is True:
            return tuple(dict_to_dataclass_tree(x, resolved) for x in data["items"])
        cls_name = data.get(_DATACLASS_MARKER)
        if cls_name:
            if cls_name not in resolved:
                raise ValueError(f"Unknown dataclass '{cls_name}'. Register it with @register_dataclass.")
            cls = resolved[cls_name]
            kwargs = {f.name: dict_to_dataclass_tree(data[f.name], resolved)
                      for f in fields(cls) if f.name in data}
            return cls(**kwargs)
        return {k: dict_to_dataclass_tree(v, resolved) for k, v in data.items()}
    return data


def save_dataclass_hdf5(filepath: Union[str, PathLike], obj: Any) -> None:
    save_dict_to_hdf5(filepath, dataclass_to_hdf5_native_dict(obj))


def load_dataclass_hdf5(filepath: Union[str, PathLike], known: dict[str, type] | None = None) -> Any:
    return dict_to_dataclass_tree(load_dict_from_hdf5(filepath), known)
