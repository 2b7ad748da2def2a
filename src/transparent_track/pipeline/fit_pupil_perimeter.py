# pipeline/fit_pupil_perimeter.py
"""
Fitting pass over the pupil perimeters of a video.

Without a scene geometry every frame gets a bounded ellipse fit (stage
'initial'). With one, the eye pose is searched per frame and the ellipse is
the projection of that pose (stage 'sceneConstrained'). Frames are
independent; the caller decides how they are mapped (builtin map, a process
pool's map, ...). Rows are merged by frame index, so unordered maps are fine.
"""
from __future__ import annotations
import time
from dataclasses import dataclass, field
from functools import partial
from multiprocessing import get_context
from os import PathLike
from pathlib import Path
from typing import Callable, Iterable, Optional, Sequence, Union
import numpy as np

from transparent_track.config.fit_config import FitConfig, fit_config, validate_fit_config
from transparent_track.errors import ConfigurationError, FitStatus
from transparent_track.fitting.ellipse_fitter import clean_points, constrained_ellipse_fit
from transparent_track.fitting.eye_pose_fitter import eye_pose_ellipse_fit
from transparent_track.fitting.split_halves import split_halves_sd
from transparent_track.geometry.ellipse import nan_ellipse
from transparent_track.logging_utils.logging_setup import get_logger
from transparent_track.projection.forward_projector import project_pupil
from transparent_track.pupil_data.perimeter import PerimeterFrame, load_perimeter
from transparent_track.pupil_data.pupil_data import FitStage, PupilData, StageResult
from transparent_track.scene_geometry.scene_geometry import SceneGeometry

log = get_logger(__name__)

FrameMap = Callable[[Callable, Iterable], Iterable]


@dataclass
class FrameFit:
    ellipse: np.ndarray = field(default_factory=nan_ellipse)
    ellipse_rmse: float = np.nan
    ellipse_splits_sd: np.ndarray = field(default_factory=nan_ellipse)
    eye_pose: np.ndarray = field(default_factory=lambda: np.full(4, np.nan))
    eye_pose_rmse: float = np.nan
    eye_pose_splits_sd: np.ndarray = field(default_factory=lambda: np.full(4, np.nan))
    bad_frame: bool = False
    status: FitStatus = FitStatus.INSUFFICIENT_DATA


def _fit_ellipse_frame(x, y, cfg: FitConfig) -> FrameFit:
    lb, ub = cfg.ellipse_transparent_lb, cfg.ellipse_transparent_ub
    fit = constrained_ellipse_fit(x, y, lb, ub, max_nfev=cfg.ellipse_search_max_evaluations)
    out = FrameFit(ellipse=fit.ellipse, ellipse_rmse=fit.rmse, status=fit.status)
    if fit.is_success and cfg.n_splits > 0:
        out.ellipse_splits_sd = split_halves_sd(
            x, y, cfg.n_splits,
            lambda hx, hy: constrained_ellipse_fit(hx, hy, lb, ub,
                                                   max_nfev=cfg.ellipse_search_max_evaluations).ellipse,
            n_params=5)
    return out


def _fit_pose_frame(x, y, scene_geometry: SceneGeometry, cfg: FitConfig) -> FrameFit:
    def pose_fit(px, py, x0=None):
        return eye_pose_ellipse_fit(
            px, py, scene_geometry, x0=x0,
            lb=cfg.eye_pose_lb, ub=cfg.eye_pose_ub,
            repeat_search_threshold=cfg.bad_frame_error_threshold,
            max_repeat_searches=cfg.max_repeat_searches,
            ray_trace=cfg.use_ray_tracing,
            n_pupil_perim_points=cfg.n_pupil_perim_points,
            ray_trace_max_iterations=cfg.ray_trace_max_iterations,
            max_nfev=cfg.pose_search_max_evaluations)

    def ellipse_of(pose):
        return project_pupil(pose, scene_geometry, n_pupil_perim_points=cfg.n_pupil_perim_points,
                             ray_trace=cfg.use_ray_tracing,
                             ray_trace_max_iterations=cfg.ray_trace_max_iterations).ellipse

    fit = pose_fit(x, y)
    out = FrameFit(status=fit.status)
    if not fit.is_success:
        return out
    out.eye_pose = fit.eye_pose
    out.eye_pose_rmse = fit.rmse
    out.ellipse = ellipse_of(fit.eye_pose)
    # the pose objective is the ellipse error of a scene-constrained fit
    out.ellipse_rmse = fit.rmse
    out.bad_frame = fit.bad_frame

    if cfg.n_splits > 0:
        def half_fit(hx, hy):
            half = pose_fit(hx, hy, x0=fit.eye_pose)
            if not half.is_success:
                return np.full(9, np.nan)
            return np.concatenate([ellipse_of(half.eye_pose), half.eye_pose])

        sd = split_halves_sd(x, y, cfg.n_splits, half_fit, n_params=9)
        out.ellipse_splits_sd, out.eye_pose_splits_sd = sd[:5], sd[5:]
    return out


def fit_frame(frame: PerimeterFrame,
              scene_geometry: Optional[SceneGeometry],
              config: FitConfig,
              frame_index: int = -1) -> FrameFit:
    """
    Fit one frame. Fit failures and numerical breakdowns come back as NaN rows;
    any other exception propagates.
    """
    x, y = clean_points(frame.xp, frame.yp)
    if x.size == 0:
        return FrameFit()
    try:
        if scene_geometry is None:
            out = _fit_ellipse_frame(x, y, config)
        else:
            out = _fit_pose_frame(x, y, scene_geometry, config)
    except (FloatingPointError, np.linalg.LinAlgError) as e:
        log.warning("Frame %d: fit failed (%s)", frame_index, e)
        return FrameFit(status=FitStatus.DEGENERATE_GEOMETRY)

    if out.status is not FitStatus.SUCCESS:
        log.warning("Frame %d: %s with %d points", frame_index, out.status, x.size)
    elif out.bad_frame:
        log.warning("Frame %d: pose error %.2f px above threshold %.2f",
                    frame_index, out.eye_pose_rmse, config.bad_frame_error_threshold)
    return out


def _fit_indexed_frame(item, scene_geometry, config):
    idx, frame = item
    return idx, fit_frame(frame, scene_geometry, config, frame_index=idx)


def fit_pupil_perimeter(frames: Sequence[PerimeterFrame],
                        scene_geometry: Optional[SceneGeometry] = None,
                        config: Optional[FitConfig] = None,
                        pupil_data: Optional[PupilData] = None,
                        stage: Optional[FitStage] = None,
                        frame_map: FrameMap = map) -> PupilData:
    """
    Fit every frame (or the first config.n_frames) and store the rows under
    `stage` in pupil_data, replacing an earlier result of that stage.
    """
    cfg = fit_config.get() if config is None else config
    validate_fit_config(cfg)
    if stage is None:
        stage = FitStage.INITIAL if scene_geometry is None else FitStage.SCENE_CONSTRAINED
    stage = FitStage(stage)
    if stage is not FitStage.INITIAL and scene_geometry is None:
        raise ConfigurationError(f"stage '{stage}' requires a scene geometry")

    n_frames = len(frames) if cfg.n_frames == 0 else min(len(frames), cfg.n_frames)
    table = StageResult.empty(n_frames, with_eye_poses=scene_geometry is not None,
                              with_splits=cfg.n_splits > 0, fit_config=cfg)

    start = time.perf_counter()
    worker = partial(_fit_indexed_frame, scene_geometry=scene_geometry, config=cfg)
    for idx, row in frame_map(worker, list(enumerate(frames[:n_frames]))):
        table.ellipses[idx] = row.ellipse
        table.ellipse_rmse[idx] = row.ellipse_rmse
        if table.ellipse_splits_sd is not None:
            table.ellipse_splits_sd[idx] = row.ellipse_splits_sd
        if table.eye_poses is not None:
            table.eye_poses[idx] = row.eye_pose
            table.eye_pose_rmse[idx] = row.eye_pose_rmse
            table.bad_frames[idx] = row.bad_frame
            if table.eye_pose_splits_sd is not None:
                table.eye_pose_splits_sd[idx] = row.eye_pose_splits_sd

    log.info("Fitted %d frames (stage %s) in %.1f s", n_frames, stage, time.perf_counter() - start)
    pupil_data = PupilData() if pupil_data is None else pupil_data
    pupil_data.set(stage, table)
    return pupil_data


def run_fit_pupil_perimeter(perimeter_path: Union[str, PathLike],
                            pupil_data_path: Union[str, PathLike],
                            scene_geometry_path: Union[str, PathLike, None] = None,
                            config: Optional[FitConfig] = None) -> PupilData:
    """
    Load the perimeter file (and scene geometry), run one fitting pass with
    config.n_workers processes, and save pupil data atomically. Existing stages
    in pupil_data_path are kept.
    """
    cfg = fit_config.get() if config is None else config
    validate_fit_config(cfg)
    frames = load_perimeter(perimeter_path)
    scene_geometry = None if scene_geometry_path is None else SceneGeometry.load_json(scene_geometry_path)
    pupil_path = Path(pupil_data_path)
    pupil_data = PupilData.load(pupil_path) if pupil_path.exists() else PupilData()

    if cfg.n_workers > 1:
        with get_context("spawn").Pool(processes=cfg.n_workers) as pool:
            pupil_data = fit_pupil_perimeter(frames, scene_geometry, cfg, pupil_data,
                                             frame_map=pool.imap_unordered)
    else:
        pupil_data = fit_pupil_perimeter(frames, scene_geometry, cfg, pupil_data)

    pupil_data.save(pupil_path)
    log.info("Saved pupil data to %s", pupil_path)
    return pupil_data
