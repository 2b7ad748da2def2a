from __future__ import annotations
from dataclasses import dataclass
from os import PathLike
from typing import Sequence, Union
import numpy as np

from transparent_track.saving_and_loading.hdf5_store import (
    load_dataclass_hdf5, register_dataclass, save_dataclass_hdf5,
)


@register_dataclass
@dataclass
class PerimeterFrame:
    """Candidate pupil boundary of one frame in intrinsic image pixels; empty when no pupil was found."""
    xp: np.ndarray
    yp: np.ndarray

    def __post_init__(self):
        self.xp = np.asarray(self.xp, dtype=float).reshape(-1)
        self.yp = np.asarray(self.yp, dtype=float).reshape(-1)
        if self.xp.shape != self.yp.shape:
            raise ValueError(f"xp and yp differ in length: {self.xp.size} vs {self.yp.size}")

    @property
    def n_points(self) -> int:
        return int(self.xp.size)

    @classmethod
    def empty(cls) -> "PerimeterFrame":
        return cls(np.empty(0), np.empty(0))


def save_perimeter(path: Union[str, PathLike], frames: Sequence[PerimeterFrame]) -> None:
    save_dataclass_hdf5(path, {"frames": list(frames)})


def load_perimeter(path: Union[str, PathLike]) -> list[PerimeterFrame]:
    return list(load_dataclass_hdf5(path)["frames"])
