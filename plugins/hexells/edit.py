"""
Edit Stage - seeding, erasing and disturbing the field

All edits act on the current buffer in place, synchronously, so the next
step or draw sees them. Arguments are validated before anything is
written: a rejected edit leaves the field exactly as it was.
"""

import logging
import math

import torch

from .errors import InvalidModelIdError
from .render import _check_view, cell_centers
from .topology import alive_mask

log = logging.getLogger(__name__)

# paint() radius meaning "the whole field"
WHOLE_FIELD = -1


def _wrapped(offset, size):
    """Shortest signed offset on a ring of the given size."""
    return (offset + size / 2) % size - size / 2


class EditStage:

    def __init__(self, bank, device, alive_threshold=0.1, disturb_scale=0.1, seed=None):
        self.bank = bank
        self.device = torch.device(device)
        self.alive_threshold = alive_threshold
        self.disturb_scale = disturb_scale
        self.hidden = torch.tensor(bank.hidden_channels, dtype=torch.long,
                                   device=self.device)
        self.generator = torch.Generator(device=self.device)
        if seed is None:
            self.generator.seed()
        else:
            self.generator.manual_seed(seed)

    def _grid(self, field):
        ys = torch.arange(field.height, device=self.device, dtype=torch.float32)
        xs = torch.arange(field.width, device=self.device, dtype=torch.float32)
        return torch.meshgrid(ys, xs, indexing="ij")

    def seed_state(self):
        """State vector of a freshly seeded cell: everything but color set to 1."""
        seed = torch.zeros(self.bank.channel_n, device=self.device)
        seed[self.bank.visible_n:] = 1.0
        return seed

    @torch.no_grad()
    def paint(self, field, x, y, radius, model_id):
        """Stamp a model and a single live seed.

        Cells strictly closer than radius to (x, y), measured across the
        wrapped edges, get the model id and an empty state; the cell nearest
        to (x, y) is then made alive. With radius == -1 the whole field is
        repainted and the seed goes to the center of the field.

        Raises:
            InvalidModelIdError: model_id is not a loaded model
            ValueError: radius is negative (other than -1)
        """
        if not self.bank.is_valid_id(model_id):
            raise InvalidModelIdError(
                f"model id {model_id!r} is not in [0, {self.bank.count()})")
        if radius != WHOLE_FIELD and radius < 0:
            raise ValueError(f"radius must be >= 0 or {WHOLE_FIELD}, got {radius}")

        buf = field.current_buffer()
        if radius == WHOLE_FIELD:
            mask = torch.ones(field.height, field.width, dtype=torch.bool,
                              device=self.device)
            sx, sy = field.width // 2, field.height // 2
        else:
            gy, gx = self._grid(field)
            dx = _wrapped(gx - x, field.width)
            dy = _wrapped(gy - y, field.height)
            mask = dx ** 2 + dy ** 2 < radius * radius
            sx = math.floor(x + 0.5) % field.width
            sy = math.floor(y + 0.5) % field.height
        mask[sy, sx] = True

        buf.selector[mask] = int(model_id)
        buf.state[:, mask] = 0.0
        buf.state[:, sy, sx] = self.seed_state()
        log.debug("paint model %d at (%s, %s) r=%s", model_id, x, y, radius)

    @torch.no_grad()
    def clear_circle(self, field, x, y, radius, view_size, hex_offset=False):
        """Kill every cell whose display-space center is within radius of (x, y).

        On hex grids the last cell of each odd row overhangs the right edge
        and is drawn wrapped onto the left one, so it is also measured from
        its wrapped center. Selectors are kept so the same model regrows
        into the hole.
        """
        vw, _ = _check_view(view_size)
        cx, cy = cell_centers(field.width, field.height, view_size, hex_offset,
                              device=self.device)
        dx = cx - x
        if hex_offset:
            overhang = torch.zeros_like(dx, dtype=torch.bool)
            overhang[1::2, -1] = True
            dx = torch.where(overhang, torch.minimum(dx.abs(), (dx - vw).abs()), dx)
        mask = dx ** 2 + (cy - y) ** 2 < radius * radius
        field.current_buffer().state[:, mask] = 0.0

    @torch.no_grad()
    def disturb(self, field):
        """Add noise to the hidden channels of live cells."""
        if self.hidden.numel() == 0:
            return
        state = field.current_buffer().state
        alive = alive_mask(state, self.bank.alive_channel, self.bank.neighborhood,
                           self.alive_threshold).to(state.dtype)
        field.scratch.normal_(generator=self.generator)
        noise = field.scratch[self.hidden] * self.disturb_scale * alive
        state[self.hidden] += noise

    def release(self):
        self.generator = None
