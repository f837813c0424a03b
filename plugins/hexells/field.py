"""
Double-Buffered State Field

Two same-shaped buffers alternate between "current" (read by render, edits
and the update pass) and "write" (target of the update pass). A single
index flag says which is current; swap() flips it after each completed
update pass. Nothing ever writes the buffer it is reading from.
"""

import torch


class FieldBuffer:
    """One logical buffer: cell state plus the per-cell model selector."""

    def __init__(self, channel_n, height, width, device):
        self.state = torch.zeros(channel_n, height, width,
                                 dtype=torch.float32, device=device)
        self.selector = torch.zeros(height, width, dtype=torch.uint8, device=device)


class StateField:
    """Toroidal W x H grid of cells with C channels each."""

    def __init__(self, width, height, channel_n, device=None):
        self.width = width
        self.height = height
        self.channel_n = channel_n
        self.device = torch.device(device or "cpu")
        self._buffers = [FieldBuffer(channel_n, height, width, self.device),
                         FieldBuffer(channel_n, height, width, self.device)]
        self._current = 0
        # Perturbation scratch space for disturb()
        self.scratch = torch.zeros(channel_n, height, width,
                                   dtype=torch.float32, device=self.device)

    @property
    def shape(self):
        return (self.channel_n, self.height, self.width)

    def current_buffer(self):
        return self._buffers[self._current]

    def write_buffer(self):
        return self._buffers[1 - self._current]

    def swap(self):
        self._current = 1 - self._current

    def reset(self, seed=0.0):
        """Fill every cell with a constant state and model 0.

        Args:
            seed: Scalar, or one value per channel
        """
        value = torch.as_tensor(seed, dtype=torch.float32, device=self.device)
        if value.dim() == 1:
            if value.numel() != self.channel_n:
                raise ValueError(f"seed has {value.numel()} channels, "
                                 f"field has {self.channel_n}")
            value = value[:, None, None]
        elif value.dim() != 0:
            raise ValueError("seed must be a scalar or a per-channel sequence")
        for buf in self._buffers:
            buf.state.copy_(value.expand(self.shape))
            buf.selector.zero_()

    def release(self):
        self._buffers = []
        self.scratch = None
