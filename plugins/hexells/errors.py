"""
Engine Error Taxonomy

Construction-time errors (AssetFormatError, UnsupportedModelCountError)
abort engine creation before the ready callback fires. Edit and render
errors are recoverable and leave the field untouched. DeviceLostError
makes the engine instance unusable; EngineDestroyedError is always a
caller bug.
"""


class HexellsError(Exception):
    """Base class for all engine errors."""


class AssetFormatError(HexellsError):
    """The model asset is malformed or internally inconsistent."""


class UnsupportedModelCountError(HexellsError):
    """More models than the selector plane can address."""


class InvalidModelIdError(HexellsError, ValueError):
    """A model id outside [0, count)."""


class UnsupportedRenderModeError(HexellsError, ValueError):
    """draw() was asked for a projection it does not implement."""


class DeviceLostError(HexellsError):
    """The compute device failed during a pass. Rebuild the engine."""


class EngineDestroyedError(HexellsError):
    """An operation was called after destroy()."""
