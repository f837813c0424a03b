"""
Update Stage - one asynchronous neural CA step

For every cell in parallel:
1. gather self + neighbors (toroidal)
2. run the cell's own model (picked by its selector) to get a state delta
3. apply the delta only where a per-cell random draw < fire_rate
4. zero every cell that is not alive both before and after the update,
   alive meaning the neighborhood max of the alive channel > threshold
5. write into the field's write buffer, selector copied through

The random stream comes from a torch.Generator seeded once, so a run is
reproducible from its seed while every step still gets fresh draws.
"""

import torch

from .topology import alive_mask, perceive


class UpdateStage:

    def __init__(self, bank, device, fire_rate=0.5, alive_threshold=0.1, seed=None):
        """
        Args:
            bank: Loaded ModelBank
            device: torch device the field lives on
            fire_rate: Probability that a cell applies its delta this step
            alive_threshold: Liveness threshold on the alive channel
            seed: Seed for the fire-mask stream (None = nondeterministic)
        """
        self.device = torch.device(device)
        self.neighborhood = bank.neighborhood
        self.alive_channel = bank.alive_channel
        self.fire_rate = fire_rate
        self.alive_threshold = alive_threshold
        self.layers = bank.pack(self.device)
        self.generator = torch.Generator(device=self.device)
        if seed is None:
            self.generator.seed()
        else:
            self.generator.manual_seed(seed)
        self.step_count = 0

    def _alive(self, state):
        return alive_mask(state, self.alive_channel, self.neighborhood,
                          self.alive_threshold)

    def _delta(self, state, selector):
        """Evaluate each cell's model over its gathered neighborhood."""
        C, H, W = state.shape
        features = perceive(state, self.neighborhood).reshape(-1, H * W).t()
        ids = selector.reshape(-1).long()
        delta = torch.zeros(H * W, C, dtype=state.dtype, device=state.device)
        last = len(self.layers) - 1
        for model_id in torch.unique(ids).tolist():
            cells = (ids == model_id).nonzero(as_tuple=True)[0]
            x = features[cells]
            for i, (weights, bias) in enumerate(self.layers):
                x = x @ weights[model_id] + bias[model_id]
                if i < last:
                    x = torch.relu(x)
            delta[cells] = x
        return delta.t().reshape(C, H, W)

    def fire_mask(self, height, width):
        draw = torch.rand(height, width, generator=self.generator, device=self.device)
        return draw < self.fire_rate

    @torch.no_grad()
    def run(self, field):
        """Compute the next state of field into its write buffer."""
        src = field.current_buffer()
        dst = field.write_buffer()
        state = src.state

        pre_alive = self._alive(state)
        delta = self._delta(state, src.selector)
        fire = self.fire_mask(field.height, field.width)
        updated = state + delta * fire.to(state.dtype)

        alive = pre_alive & self._alive(updated)
        updated = updated * alive.to(state.dtype)

        dst.state.copy_(updated)
        dst.selector.copy_(src.selector)
        self.step_count += 1

    def release(self):
        self.layers = []
        self.generator = None
