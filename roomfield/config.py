"""
Engine configuration.

Defaults live in :data:`DEFAULTS`; a JSON file can override any subset of
them.  Unlike a global settings store, an :class:`EngineConfig` is a plain
value passed explicitly to whoever needs it.
"""

from __future__ import annotations

import copy
import json
import logging
from dataclasses import asdict, dataclass, fields
from pathlib import Path
from typing import Any, Optional, Union

from mesh3d.classify import STRATEGIES
from .errors import ConfigurationError
from .interpolation import KERNELS, METHODS

logger = logging.getLogger(__name__)

EXECUTORS = ("process", "thread")

# ── Defaults ──────────────────────────────────────────────────────────────

DEFAULTS: dict[str, Any] = {
    # Lattice
    "lattice_resolution": 0.25,
    "mesh_resolution": 20,
    # Classifier
    "tolerance": 2,
    "invert_logic": False,
    "classifier_strategy": "six_axis",
    "batch_size": 2048,
    "progress_interval_s": 0.1,
    # Interpolation
    "interpolation_method": "idw",
    "rbf_kernel": "multiquadric",
    "rbf_epsilon": 1.0,
    "rbf_smoothing": 0.0,
    "idw_power": 2.0,
    "smoothing_window_s": 0.0,
    # Workers
    "executor": "process",
    "max_workers": None,
}


@dataclass(frozen=True)
class EngineConfig:
    """Validated engine settings (see :data:`DEFAULTS` for the values)."""

    lattice_resolution: float = DEFAULTS["lattice_resolution"]
    mesh_resolution: int = DEFAULTS["mesh_resolution"]
    tolerance: int = DEFAULTS["tolerance"]
    invert_logic: bool = DEFAULTS["invert_logic"]
    classifier_strategy: str = DEFAULTS["classifier_strategy"]
    batch_size: int = DEFAULTS["batch_size"]
    progress_interval_s: float = DEFAULTS["progress_interval_s"]
    interpolation_method: str = DEFAULTS["interpolation_method"]
    rbf_kernel: str = DEFAULTS["rbf_kernel"]
    rbf_epsilon: float = DEFAULTS["rbf_epsilon"]
    rbf_smoothing: float = DEFAULTS["rbf_smoothing"]
    idw_power: float = DEFAULTS["idw_power"]
    smoothing_window_s: float = DEFAULTS["smoothing_window_s"]
    executor: str = DEFAULTS["executor"]
    max_workers: Optional[int] = DEFAULTS["max_workers"]

    def __post_init__(self) -> None:
        if not self.lattice_resolution > 0:
            raise ConfigurationError(f"lattice_resolution must be positive, got {self.lattice_resolution}")
        if int(self.mesh_resolution) < 2:
            raise ConfigurationError(f"mesh_resolution must be at least 2, got {self.mesh_resolution}")
        if not 1 <= int(self.tolerance) <= 6:
            raise ConfigurationError(f"tolerance must be in [1, 6], got {self.tolerance}")
        if self.classifier_strategy not in STRATEGIES:
            raise ConfigurationError(f"classifier_strategy must be one of {STRATEGIES}, got {self.classifier_strategy!r}")
        if int(self.batch_size) < 1:
            raise ConfigurationError(f"batch_size must be positive, got {self.batch_size}")
        if self.progress_interval_s < 0:
            raise ConfigurationError(f"progress_interval_s must be non-negative, got {self.progress_interval_s}")
        if self.interpolation_method not in METHODS:
            raise ConfigurationError(f"interpolation_method must be one of {METHODS}, got {self.interpolation_method!r}")
        if self.rbf_kernel not in KERNELS:
            raise ConfigurationError(f"rbf_kernel must be one of {KERNELS}, got {self.rbf_kernel!r}")
        if not self.rbf_epsilon > 0:
            raise ConfigurationError(f"rbf_epsilon must be positive, got {self.rbf_epsilon}")
        if self.rbf_smoothing < 0:
            raise ConfigurationError(f"rbf_smoothing must be non-negative, got {self.rbf_smoothing}")
        if not self.idw_power > 0:
            raise ConfigurationError(f"idw_power must be positive, got {self.idw_power}")
        if self.smoothing_window_s < 0:
            raise ConfigurationError(f"smoothing_window_s must be non-negative, got {self.smoothing_window_s}")
        if self.executor not in EXECUTORS:
            raise ConfigurationError(f"executor must be one of {EXECUTORS}, got {self.executor!r}")
        if self.max_workers is not None and int(self.max_workers) < 1:
            raise ConfigurationError(f"max_workers must be positive, got {self.max_workers}")

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> EngineConfig:
        """Build from *data* merged over :data:`DEFAULTS`; unknown keys are rejected."""
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise ConfigurationError(f"unknown configuration keys: {', '.join(unknown)}")
        merged = copy.deepcopy(DEFAULTS)
        merged.update(data)
        return cls(**merged)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    def replace(self, **changes: Any) -> EngineConfig:
        """Copy with *changes* applied (and validated)."""
        return self.from_dict({**self.to_dict(), **changes})

    def diff(self) -> dict[str, Any]:
        """Values that differ from defaults."""
        return {k: v for k, v in self.to_dict().items() if v != DEFAULTS[k]}


def load_config(path: Union[str, Path, None] = None) -> EngineConfig:
    """Load an :class:`EngineConfig` from a JSON file, merging with defaults.

    ``None`` or a missing file gives the defaults.  A file that is not a
    JSON object raises :class:`ConfigurationError`.
    """
    if path is None:
        return EngineConfig()
    path = Path(path)
    if not path.exists():
        logger.info("No config at %s; using defaults", path)
        return EngineConfig()
    try:
        saved = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        raise ConfigurationError(f"invalid JSON in {path}: {e}") from e
    if not isinstance(saved, dict):
        raise ConfigurationError(f"{path} must hold a JSON object, got {type(saved).__name__}")
    config = EngineConfig.from_dict(saved)
    logger.info("Loaded engine config from %s", path)
    return config


def save_config(config: EngineConfig, path: Union[str, Path]) -> None:
    """Write *config* as JSON (creating parent directories)."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(config.to_dict(), indent=2), encoding="utf-8")
