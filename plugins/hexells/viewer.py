"""
Interactive Pygame Viewer for Hexells

Hosts the engine in a window: mouse drags erase cells (and horizontal
swipes switch models), the frame loop steps and draws at a fixed rate.

Controls:
  A / Z       Next / previous model
  D           Disturb hidden state
  M           Cycle render mode (color, alive, model, hidden)
  [ / ]       Brush radius
  - / =       Steps per frame
  S           Save screenshot
  H           Toggle HUD overlay
  Q / ESC     Quit
  Mouse L     Erase (drag left/right quickly to swipe models)
"""

import logging
import os
import time

import numpy as np
import pygame

from .errors import DeviceLostError
from .render import RENDER_MODES

log = logging.getLogger(__name__)


class Viewer:
    def __init__(self, session, width=800, height=800):
        self.session = session
        self.engine = session.engine
        self.canvas_w = width
        self.canvas_h = height
        self.running = True
        self.show_hud = True
        self.mode = "color"
        self.fps_history = []
        self._screen = None
        self._last_frame = None

    def _present(self, rgb):
        # pygame surfaces are (w, h, 3)
        self._last_frame = rgb
        if self._screen is not None:
            pygame.surfarray.blit_array(self._screen, rgb.swapaxes(0, 1))

    def view_size(self):
        return self._screen.get_size()

    def _draw_hud(self, screen, fps):
        s = self.session
        stats = self.engine.stats
        lines = [
            f"{s.model_name}  ({s.cur_model_index + 1}/{len(s.shuffled_model_ids)})",
            f"gen {stats['generation']}  alive {stats['alive_pct']:.1f}%  "
            f"{fps:.0f} fps",
            f"mode {self.mode}  brush {s.brush_radius}  steps/frame {s.step_per_frame}",
        ]
        y = 8
        for line in lines:
            text_surface = self.hud_font.render(line, True, (230, 235, 245))
            bg = pygame.Surface((text_surface.get_width() + 8,
                                 text_surface.get_height() + 4), pygame.SRCALPHA)
            bg.fill((0, 0, 0, 150))
            screen.blit(bg, (8, y))
            screen.blit(text_surface, (12, y + 2))
            y += text_surface.get_height() + 6

    def _save_screenshot(self):
        if self._last_frame is None:
            return
        screenshots_dir = os.path.join(os.getcwd(), "screenshots")
        os.makedirs(screenshots_dir, exist_ok=True)
        timestamp = time.strftime("%Y%m%d_%H%M%S")
        path = os.path.join(screenshots_dir, f"hexells_{self.session.model_name}_{timestamp}.png")
        surface = pygame.surfarray.make_surface(self._last_frame.swapaxes(0, 1).copy())
        pygame.image.save(surface, path)
        print(f"Screenshot saved: {path}")

    def _handle_keydown(self, event):
        s = self.session
        key = event.key
        if key in (pygame.K_q, pygame.K_ESCAPE):
            self.running = False
        elif key == pygame.K_a:
            s.switch_model(1)
        elif key == pygame.K_z:
            s.switch_model(-1)
        elif key == pygame.K_d:
            self.engine.disturb()
        elif key == pygame.K_m:
            idx = RENDER_MODES.index(self.mode)
            self.mode = RENDER_MODES[(idx + 1) % len(RENDER_MODES)]
        elif key == pygame.K_LEFTBRACKET:
            s.set_params(brush_radius=max(1, s.brush_radius - 2))
        elif key == pygame.K_RIGHTBRACKET:
            s.set_params(brush_radius=min(40, s.brush_radius + 2))
        elif key == pygame.K_MINUS:
            s.set_params(step_per_frame=max(0, s.step_per_frame - 1))
        elif key == pygame.K_EQUALS:
            s.set_params(step_per_frame=min(6, s.step_per_frame + 1))
        elif key == pygame.K_s:
            self._save_screenshot()
        elif key == pygame.K_h:
            self.show_hud = not self.show_hud

    def _handle_mouse(self, event):
        s = self.session
        if event.type == pygame.MOUSEBUTTONDOWN and event.button == 1:
            s.start_gesture(event.pos)
            s.touch(event.pos, self.view_size())
        elif event.type == pygame.MOUSEMOTION and event.buttons[0]:
            s.touch(event.pos, self.view_size())
        elif event.type == pygame.MOUSEBUTTONUP and event.button == 1:
            s.end_gesture()

    def run(self):
        """Main viewer loop."""
        pygame.init()
        screen = pygame.display.set_mode((self.canvas_w, self.canvas_h), pygame.RESIZABLE)
        pygame.display.set_caption("Hexells")
        clock = pygame.time.Clock()
        self.hud_font = pygame.font.SysFont("menlo", 13)
        self._screen = screen
        self.engine.surface = self._present

        try:
            while self.running:
                for event in pygame.event.get():
                    if event.type == pygame.QUIT:
                        self.running = False
                    elif event.type == pygame.KEYDOWN:
                        self._handle_keydown(event)
                    elif event.type == pygame.VIDEORESIZE:
                        screen = pygame.display.set_mode(event.size, pygame.RESIZABLE)
                        self._screen = screen
                    elif event.type in (pygame.MOUSEBUTTONDOWN, pygame.MOUSEMOTION,
                                        pygame.MOUSEBUTTONUP):
                        self._handle_mouse(event)

                if not self.running:
                    break

                self.session.frame(self.view_size(), mode=self.mode)

                fps = clock.get_fps()
                self.fps_history.append(fps)
                if len(self.fps_history) > 60:
                    self.fps_history.pop(0)
                if self.show_hud:
                    self._draw_hud(screen, float(np.mean(self.fps_history)))

                pygame.display.flip()
                clock.tick(self.session.fps)
        except DeviceLostError as exc:
            log.error("Stopping viewer: %s", exc)
        finally:
            self.session.destroy()
            pygame.quit()
