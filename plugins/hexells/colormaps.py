"""
Colormaps for the model render mode

Each colormap is an (n, 3) uint8 lookup table. The model view indexes the
table with a cell's model id, so neighbouring ids get clearly different
hues.
"""

import numpy as np


def _interpolate_colors(stops, n=256):
    """
    Build a colormap by interpolating between color stops.

    Args:
        stops: List of (position, (r, g, b)) where position is [0, 1]
        n: Number of entries in the LUT
    """
    positions = np.array([s[0] for s in stops], dtype=np.float64)
    colors = np.array([s[1] for s in stops], dtype=np.float64)
    t = np.linspace(0.0, 1.0, n) if n > 1 else np.zeros(1)

    j = np.clip(np.searchsorted(positions, t, side="right") - 1, 0, len(stops) - 2)
    span = positions[j + 1] - positions[j]
    frac = np.where(span > 0, (t - positions[j]) / np.where(span > 0, span, 1), 0.0)
    frac = frac * frac * (3 - 2 * frac)  # smoothstep
    lut = colors[j] + frac[:, None] * (colors[j + 1] - colors[j])
    return np.clip(lut, 0, 255).astype(np.uint8)


def spectrum(n=256):
    """Saturated hue sweep, red through violet."""
    return _interpolate_colors([
        (0.00, (240, 60, 60)),
        (0.17, (240, 170, 40)),
        (0.33, (200, 230, 50)),
        (0.50, (50, 210, 120)),
        (0.67, (40, 170, 230)),
        (0.83, (110, 80, 240)),
        (1.00, (220, 70, 200)),
    ], n)


def model_wheel(n):
    """n distinct colors, one per model id.

    Ids are spread with a golden-ratio stride so consecutive ids land far
    apart on the spectrum.
    """
    lut = spectrum(256)
    idx = (np.arange(n) * 0.618033988749895 % 1.0 * 255).astype(np.intp)
    return lut[idx]


COLORMAPS = {
    "spectrum": spectrum,
    "model_wheel": model_wheel,
}


def get_colormap(name, n=256):
    """Get a colormap LUT (n, 3) uint8 array by name."""
    return COLORMAPS[name](n)
