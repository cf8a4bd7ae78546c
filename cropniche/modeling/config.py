from __future__ import annotations
from dataclasses import dataclass, field
import os

# great-circle length of one degree of arc on the mean-radius sphere
KM_PER_DEGREE = 111.195


def _env_bool(name: str, default: bool) -> bool:
    v = os.getenv(name)
    if v is None:
        return default
    return v.strip().lower() in {"1", "true", "yes", "y", "on"}


def offset_axis(start: int = -20, stop: int = 20, step: int = 1) -> tuple[float, ...]:
    """Perturbation levels in proxy-SD units, inclusive of both ends."""
    if step <= 0:
        raise ValueError(f"Perturbation step must be positive, got {step}")
    if stop < start:
        raise ValueError(f"Perturbation stop ({stop}) is below start ({start})")
    return tuple(float(v) for v in range(start, stop + 1, step))


@dataclass(frozen=True)
class KrigingConfig:
    variogram_model: str = "exponential"

    # Leave all three as None to let PyKrige fit the variogram per level.
    sill: float | None = None
    range_km: float | None = None
    nugget: float | None = None
    nlags: int = 6

    # linear drift covariates removed before kriging the residuals
    drift_terms: tuple[str, ...] = ("elevation",)

    min_stations: int = 10
    batch_size: int = 10_000

    def variogram_parameters(self) -> list[float] | None:
        given = [self.sill, self.range_km, self.nugget]
        if all(v is None for v in given):
            return None
        if any(v is None for v in given):
            raise ValueError("Set all of sill, range_km, nugget or none of them")
        # PyKrige geographic mode measures range in degrees of arc
        return [float(self.sill), float(self.range_km) / KM_PER_DEGREE, float(self.nugget)]


@dataclass(frozen=True)
class SmoothingConfig:
    span: float = 0.1  # lowess neighbourhood as a fraction of the offset axis
    knot_step: float = 0.1  # resolution (SD) at which the smooth curve is stored
    increasing: bool = True  # warmer offsets never lower the niche probability


@dataclass(frozen=True)
class NicheConfig:
    offsets_sd: tuple[float, ...] = field(default_factory=offset_axis)
    kriging: KrigingConfig = field(default_factory=KrigingConfig)
    smoothing: SmoothingConfig = field(default_factory=SmoothingConfig)

    # "constant": a level where every station agrees becomes a flat surface
    # "error": such a level is handed to the kriging engine, which rejects it
    degenerate_policy: str = "constant"

    def __post_init__(self) -> None:
        if self.degenerate_policy not in {"constant", "error"}:
            raise ValueError(f"Unknown degenerate_policy: {self.degenerate_policy}")
        offsets = list(self.offsets_sd)
        if len(offsets) < 2:
            raise ValueError("Need at least two perturbation levels")
        if any(b <= a for a, b in zip(offsets, offsets[1:])):
            raise ValueError("Perturbation levels must be strictly increasing")
