"""Error taxonomy for model loading and inference."""

from __future__ import annotations


class ClassifyXError(Exception):
    """Base class for all ClassifyX errors."""


class MissingArtifactError(ClassifyXError):
    """The archive lacks a required entry ("topology" or "weights")."""

    def __init__(self, missing: list[str]) -> None:
        self.missing = tuple(missing)
        names = " and ".join(self.missing)
        super().__init__(
            f"Model archive is missing required {names} entry "
            "(expected model.json and model.weights.bin or *.weights.bin)"
        )

    @property
    def artifact(self) -> str:
        """The first missing artifact name."""
        return self.missing[0]


class FormatError(ClassifyXError):
    """The archive or topology document is malformed."""


class LoadError(ClassifyXError):
    """Neither the layers nor the graph runtime could build the model.

    The graph failure is chained as ``__cause__``; the layers failure is kept on
    :attr:`layers_error`.
    """

    def __init__(self, message: str, layers_error: BaseException | None = None) -> None:
        super().__init__(message)
        self.layers_error = layers_error


class NotLoadedError(ClassifyXError):
    """Prediction was requested with no active model."""


class InferenceError(ClassifyXError):
    """The runtime raised while executing the model."""


class ImageError(ClassifyXError):
    """An uploaded image could not be decoded or is missing."""


class UnknownModeWarning(UserWarning):
    """An unrecognized normalization mode was requested; falling back to x/255."""
