"""
Hexells - neural cellular automata on a toroidal grid.

Every cell runs a small trained network over its neighborhood; several
networks can share one grid, each cell naming its own.
"""

from .engine import CellularAutomata
from .errors import (
    AssetFormatError, DeviceLostError, EngineDestroyedError, HexellsError,
    InvalidModelIdError, UnsupportedModelCountError, UnsupportedRenderModeError,
)
from .model_bank import MAX_MODELS, ModelBank, random_asset
from .render import RENDER_MODES
from .session import Session

__all__ = [
    "CellularAutomata", "ModelBank", "Session", "random_asset",
    "MAX_MODELS", "RENDER_MODES",
    "HexellsError", "AssetFormatError", "UnsupportedModelCountError",
    "InvalidModelIdError", "UnsupportedRenderModeError", "DeviceLostError",
    "EngineDestroyedError",
]
