from __future__ import annotations


class CropNicheError(Exception):
    """Base class for pipeline errors."""


class ModelFittingError(CropNicheError):
    """
    A spatial model could not be fitted for one (cultivar, perturbation) unit:
    too few stations, a constant indicator, or a singular kriging system.
    """


class MissingArtifactError(CropNicheError, FileNotFoundError):
    """A stage needs artifacts that an earlier stage has not produced."""

    def __init__(self, kind: str, keys: list[str]):
        self.kind = kind
        self.keys = list(keys)
        super().__init__(f"Missing {kind} artifacts ({len(self.keys)}): {', '.join(self.keys)}")


class ConfigurationMismatchError(CropNicheError, ValueError):
    """Inputs that must share a spatial layout, band set or time axis do not."""
