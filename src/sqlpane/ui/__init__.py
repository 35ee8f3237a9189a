"""Full-screen terminal front end."""

from .app import build_application, run, translate_key
from .render import render_frame

__all__ = ["build_application", "render_frame", "run", "translate_key"]
