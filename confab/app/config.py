import logging
import os
from dataclasses import dataclass

from dotenv import load_dotenv

load_dotenv()

LLM_MODEL = os.getenv("LLM_MODEL", "openrouter/google/gemini-2.0-flash-exp:free")
LLM_API_BASE = os.getenv("LLM_API_BASE") or None
LLM_API_KEY = os.getenv("LLM_API_KEY") or os.getenv("OPENROUTER_API_KEY") or None
LLM_TIMEOUT = float(os.getenv("LLM_TIMEOUT", "30"))

FRONTEND_URL = os.getenv("FRONTEND_URL", "http://localhost:3000")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

# "spiral" or "grid"
POSITION_STRATEGY = os.getenv("POSITION_STRATEGY", "spiral")

FALLBACK_RELATIONSHIP = "relates to"
TRANSCRIPT_WINDOW_MS = 15000


@dataclass(frozen=True)
class LayoutSettings:
    # tree leveling
    root_x_center: float = 600.0
    root_y: float = 80.0
    vertical_spacing: float = 240.0
    horizontal_spacing: float = 320.0
    min_level_width: float = 320.0
    max_tree_depth: int = 6

    # grid placement
    grid_nodes_per_row: int = 3
    grid_spacing: float = 200.0

    # spiral placement
    spiral_center_x: float = 600.0
    spiral_center_y: float = 300.0
    spiral_angle_step: float = 15.0
    spiral_radius_step: float = 60.0
    spiral_max_steps: int = 20
    spiral_padding: float = 40.0


DEFAULT_LAYOUT = LayoutSettings()


def configure_logging(level=None):
    logging.basicConfig(
        level=(level or LOG_LEVEL).upper(),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
