# config/fit_config.py
from __future__ import annotations
import math
from dataclasses import dataclass, asdict, fields
from pathlib import Path
from typing import Any
import tomli
import tomli_w

from transparent_track.config.thread_safe_config import ThreadSafeConfig
from transparent_track.errors import ConfigurationError
from transparent_track.logging_utils.logging_setup import get_logger

log = get_logger(__name__)


@dataclass
class FitConfig:
    """
    Options of a pupil perimeter fitting pass.

    Ellipse bounds are (x, y, area, eccentricity, theta) in intrinsic image pixels.
    Eye pose bounds are (azimuth, elevation, torsion, pupil radius) in deg and mm;
    equal lower and upper bounds pin a parameter (torsion by default).
    n_frames = 0 processes every frame.
    """
    ellipse_transparent_lb: tuple[float, ...] = (0.0, 0.0, 800.0, 0.0, 0.0)
    ellipse_transparent_ub: tuple[float, ...] = (640.0, 480.0, 20000.0, 0.6, math.pi)
    eye_pose_lb: tuple[float, ...] = (-35.0, -25.0, 0.0, 0.25)
    eye_pose_ub: tuple[float, ...] = (35.0, 25.0, 0.0, 4.0)

    # Uncertainty and bad-frame handling
    n_splits: int = 2
    bad_frame_error_threshold: float = 2.0
    max_repeat_searches: int = 3

    # Run control
    n_frames: int = 0
    n_workers: int = 1

    # Forward model and optimizer budgets
    n_pupil_perim_points: int = 5
    use_ray_tracing: bool = True
    ray_trace_max_iterations: int = 200
    pose_search_max_evaluations: int = 400
    ellipse_search_max_evaluations: int = 400

    def __post_init__(self):
        for name in ("ellipse_transparent_lb", "ellipse_transparent_ub", "eye_pose_lb", "eye_pose_ub"):
            value = getattr(self, name)
            if isinstance(value, (list, tuple)):
                setattr(self, name, tuple(float(v) for v in value))


FIT_CONFIG_TOML_PATH = Path(__file__).parent / "fit_config.toml"


def _check_bounds(name: str, lb, ub, length: int, require_finite: bool = True) -> None:
    if lb is None or ub is None or len(lb) != length or len(ub) != length:
        raise ConfigurationError(f"{name}: lower and upper bounds must both have {length} entries")
    for i, (lo, hi) in enumerate(zip(lb, ub)):
        if math.isnan(lo) or math.isnan(hi):
            raise ConfigurationError(f"{name}[{i}]: bounds must not be NaN")
        if require_finite and not (math.isfinite(lo) and math.isfinite(hi)):
            raise ConfigurationError(f"{name}[{i}]: bounds must be finite, got ({lo}, {hi})")
        if lo > hi:
            raise ConfigurationError(f"{name}[{i}]: lower bound {lo} exceeds upper bound {hi}")


def validate_ellipse_bounds(lb, ub, require_finite: bool = True) -> None:
    _check_bounds("ellipse bounds", lb, ub, 5, require_finite)
    if lb[2] < 0:
        raise ConfigurationError("ellipse bounds: area lower bound must be >= 0")
    if lb[3] < 0 or ub[3] >= 1:
        raise ConfigurationError("ellipse bounds: eccentricity must lie in [0, 1)")


def validate_eye_pose_bounds(lb, ub) -> None:
    _check_bounds("eye pose bounds", lb, ub, 4)
    if lb[3] < 0:
        raise ConfigurationError("eye pose bounds: pupil radius lower bound must be >= 0")


def validate_fit_config(cfg: FitConfig) -> None:
    """Raise ConfigurationError on the first malformed option."""
    validate_ellipse_bounds(cfg.ellipse_transparent_lb, cfg.ellipse_transparent_ub)
    validate_eye_pose_bounds(cfg.eye_pose_lb, cfg.eye_pose_ub)
    if int(cfg.n_splits) != cfg.n_splits or cfg.n_splits < 0:
        raise ConfigurationError(f"n_splits must be a non-negative integer, got {cfg.n_splits}")
    if not cfg.bad_frame_error_threshold > 0:
        raise ConfigurationError(
            f"bad_frame_error_threshold must be positive, got {cfg.bad_frame_error_threshold}")
    if cfg.max_repeat_searches < 0:
        raise ConfigurationError("max_repeat_searches must be >= 0")
    if cfg.n_frames < 0:
        raise ConfigurationError("n_frames must be >= 0 (0 = all frames)")
    if cfg.n_workers < 1:
        raise ConfigurationError("n_workers must be >= 1")
    if cfg.n_pupil_perim_points < 5:
        raise ConfigurationError("n_pupil_perim_points must be >= 5")
    for name in ("ray_trace_max_iterations", "pose_search_max_evaluations", "ellipse_search_max_evaluations"):
        if getattr(cfg, name) < 1:
            raise ConfigurationError(f"{name} must be >= 1")


def _toml_to_kwargs(raw: dict[str, Any]) -> dict[str, Any]:
    """Keep the recognized keys; anything else is ignored."""
    known = {f.name for f in fields(FitConfig)}
    ignored = sorted(set(raw) - known)
    if ignored:
        log.debug("Ignoring unrecognized fit options: %s", ignored)
    return {k: v for k, v in raw.items() if k in known}


def _dataclass_to_toml_dict(cfg: FitConfig) -> dict[str, Any]:
    return {k: list(v) if isinstance(v, tuple) else v for k, v in asdict(cfg).items()}


def fit_config_from_dict(raw: dict[str, Any]) -> FitConfig:
    cfg = FitConfig(**_toml_to_kwargs(raw))
    validate_fit_config(cfg)
    return cfg


def load_fit_config(path: Path, section: str = "fit") -> FitConfig:
    with Path(path).open("rb") as f:
        data = tomli.load(f)
    return fit_config_from_dict(data.get(section, {}))


def save_config_section(path: Path, section: str, config: ThreadSafeConfig | FitConfig) -> None:
    """Write one section back to a TOML file, keeping the other sections."""
    path = Path(path)
    try:
        with path.open("rb") as f:
            data = tomli.load(f)
    except FileNotFoundError:
        data = {}

    cfg = config.get_raw() if isinstance(config, ThreadSafeConfig) else config
    data[section] = _dataclass_to_toml_dict(cfg)

    with path.open("wb") as f:
        tomli_w.dump(data, f)


# Single global configuration instance
fit_config = ThreadSafeConfig(load_fit_config(FIT_CONFIG_TOML_PATH, "fit"), validator=validate_fit_config)
