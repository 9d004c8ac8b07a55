"""Progress & gamification package (XP, streaks, completions, achievements)."""

from .routes import create_progress_blueprint
from .service import ProgressEngine, get_progress_engine

__all__ = ["create_progress_blueprint", "ProgressEngine", "get_progress_engine"]
