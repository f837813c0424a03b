"""
Toroidal Neighborhoods

Neighbor gathering on a wrap-around grid using torch.roll, so every cell
reads its neighbors in one data-parallel pass.

Supported adjacencies:
- hex:        6 neighbors, "odd-r" offset layout (odd rows shifted right
              by half a cell). Needs an even number of rows so the row
              parity survives the wrap.
- moore:      8 neighbors
- vonneumann: 4 neighbors

Neighbor order is fixed per topology; the trained models depend on it.
"""

import torch


# (dy, dx) offsets
_HEX_EVEN = ((0, -1), (0, 1), (-1, -1), (-1, 0), (1, -1), (1, 0))
_HEX_ODD = ((0, -1), (0, 1), (-1, 0), (-1, 1), (1, 0), (1, 1))
_MOORE = ((-1, -1), (-1, 0), (-1, 1), (0, -1), (0, 1), (1, -1), (1, 0), (1, 1))
_VONNEUMANN = ((-1, 0), (0, -1), (0, 1), (1, 0))

NEIGHBOR_COUNTS = {
    "hex": len(_HEX_EVEN),
    "moore": len(_MOORE),
    "vonneumann": len(_VONNEUMANN),
}


def check_grid(neighborhood, width, height):
    """Raise ValueError if the grid cannot carry the topology."""
    if neighborhood not in NEIGHBOR_COUNTS:
        raise ValueError(f"Unknown neighborhood: {neighborhood!r}")
    if width <= 0 or height <= 0:
        raise ValueError(f"Grid must be non-empty, got {width}x{height}")
    if neighborhood == "hex" and height % 2:
        raise ValueError(f"Hex grids need an even row count, got {height}")


def _shift(x, dy, dx):
    # out[..., y, x] = x[..., y + dy, x + dx] with wrap-around
    return torch.roll(x, shifts=(-dy, -dx), dims=(-2, -1))


def gather(x, neighborhood):
    """Return [self, neighbor_0, ..., neighbor_{k-1}] views of x.

    Args:
        x: (..., H, W) tensor
        neighborhood: "hex", "moore" or "vonneumann"
    """
    out = [x]
    if neighborhood == "hex":
        odd_rows = (torch.arange(x.shape[-2], device=x.device) % 2 == 1)[:, None]
        for (ey, ex), (oy, ox) in zip(_HEX_EVEN, _HEX_ODD):
            out.append(torch.where(odd_rows, _shift(x, oy, ox), _shift(x, ey, ex)))
        return out
    offsets = _MOORE if neighborhood == "moore" else _VONNEUMANN
    for dy, dx in offsets:
        out.append(_shift(x, dy, dx))
    return out


def perceive(state, neighborhood):
    """Concatenate self and neighbor channels: (C, H, W) -> (C*(k+1), H, W)."""
    return torch.cat(gather(state, neighborhood), dim=0)


def neighborhood_max(plane, neighborhood):
    """Max of a (H, W) plane over each cell and its neighbors."""
    return torch.stack(gather(plane, neighborhood)).amax(dim=0)


def alive_mask(state, alive_channel, neighborhood, threshold):
    """Cells whose neighborhood holds an alive channel above threshold.

    The one definition of "alive" shared by the update rule, disturb(),
    the model render mode and the engine stats.
    """
    return neighborhood_max(state[alive_channel], neighborhood) > threshold
