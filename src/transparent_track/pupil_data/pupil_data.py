# pupil_data/pupil_data.py
from __future__ import annotations
from dataclasses import dataclass, field
from enum import Enum
from os import PathLike
from typing import Optional, Union
import numpy as np

from transparent_track.config.fit_config import FitConfig
from transparent_track.eye_model.eye_rotation import EYE_POSE_LABELS, EYE_POSE_UNITS
from transparent_track.geometry.ellipse import ELLIPSE_LABELS, ELLIPSE_UNITS
from transparent_track.saving_and_loading.hdf5_store import (
    load_dataclass_hdf5, register_dataclass, save_dataclass_hdf5,
)

register_dataclass(FitConfig)

ELLIPSE_COORDINATE_SYSTEM = "intrinsic image"
EYE_POSE_COORDINATE_SYSTEM = "head fixed (extrinsic)"


class FitStage(Enum):
    INITIAL = "initial"
    SCENE_CONSTRAINED = "sceneConstrained"
    RADIUS_SMOOTHED = "radiusSmoothed"

    def __str__(self):
        return self.value


@register_dataclass
@dataclass
class StageResult:
    """
    Per-frame results of one fitting pass, one row per frame in frame order.
    Eye pose columns are None for passes without a scene geometry.
    """
    ellipses: np.ndarray
    ellipse_rmse: np.ndarray
    ellipse_splits_sd: Optional[np.ndarray] = None
    eye_poses: Optional[np.ndarray] = None
    eye_pose_rmse: Optional[np.ndarray] = None
    eye_pose_splits_sd: Optional[np.ndarray] = None
    bad_frames: Optional[np.ndarray] = None

    ellipse_labels: tuple = ELLIPSE_LABELS
    ellipse_units: tuple = ELLIPSE_UNITS
    ellipse_coordinate_system: str = ELLIPSE_COORDINATE_SYSTEM
    eye_pose_labels: tuple = EYE_POSE_LABELS
    eye_pose_units: tuple = EYE_POSE_UNITS
    eye_pose_coordinate_system: str = EYE_POSE_COORDINATE_SYSTEM
    fit_config: Optional[FitConfig] = None

    def __post_init__(self):
        for name in ("ellipse_labels", "ellipse_units", "eye_pose_labels", "eye_pose_units"):
            setattr(self, name, tuple(str(v) for v in getattr(self, name)))

    @property
    def n_frames(self) -> int:
        return int(self.ellipses.shape[0])

    @property
    def has_eye_poses(self) -> bool:
        return self.eye_poses is not None

    @classmethod
    def empty(cls, n_frames: int, with_eye_poses: bool, with_splits: bool,
              fit_config: FitConfig | None = None) -> "StageResult":
        """All-NaN rows; frames that are never fit keep these values."""
        def nan(*shape):
            return np.full(shape, np.nan)

        return cls(
            ellipses=nan(n_frames, 5),
            ellipse_rmse=nan(n_frames),
            ellipse_splits_sd=nan(n_frames, 5) if with_splits else None,
            eye_poses=nan(n_frames, 4) if with_eye_poses else None,
            eye_pose_rmse=nan(n_frames) if with_eye_poses else None,
            eye_pose_splits_sd=nan(n_frames, 4) if (with_eye_poses and with_splits) else None,
            bad_frames=np.zeros(n_frames, dtype=bool) if with_eye_poses else None,
            fit_config=fit_config,
        )


@register_dataclass
@dataclass
class PupilData:
    """Results of every fitting pass of a run, keyed by FitStage value."""
    stages: dict = field(default_factory=dict)

    def __contains__(self, stage: FitStage) -> bool:
        return FitStage(stage).value in self.stages

    def get(self, stage: FitStage) -> StageResult:
        return self.stages[FitStage(stage).value]

    def set(self, stage: FitStage, result: StageResult) -> None:
        self.stages[FitStage(stage).value] = result

    def save(self, path: Union[str, PathLike]) -> None:
        save_dataclass_hdf5(path, self)

    @classmethod
    def load(cls, path: Union[str, PathLike]) -> "PupilData":
        obj = load_dataclass_hdf5(path)
        if not isinstance(obj, cls):
            raise ValueError(f"{path} does not hold PupilData (found {type(obj).__name__})")
        return obj
