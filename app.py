import os
from datetime import timedelta
from typing import Any, Optional

from flask import Flask, jsonify, session

from extensions import db
from progress import create_progress_blueprint
from progress.streak import resolve_timezone

# ====== Feature toggle ======
def _env_flag(name: str, default: bool) -> bool:
    """Parse truthy feature-toggle values from the environment."""
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _env_int(name: str, default: int, minimum: int) -> int:
    raw = os.environ.get(name)
    if not raw:
        return default
    try:
        return max(minimum, int(raw))
    except ValueError:
        print(f"⚠️ Invalid {name} value: {raw!r}. Using default {default}.")
        return default


def _env_milestones(name: str, default: tuple) -> tuple:
    raw = os.environ.get(name)
    if not raw:
        return default
    try:
        values = tuple(sorted({int(part) for part in raw.split(",") if part.strip()}))
    except ValueError:
        print(f"⚠️ Invalid {name} value: {raw!r}. Using default {default}.")
        return default
    return values or default


USE_SUPABASE = _env_flag("USE_SUPABASE", False)  # ✅ Supabase for progress tables + RPCs

# ====== Progress engine settings ======
PROGRESS_DAY_BOUNDARY_TZ = (os.environ.get("PROGRESS_DAY_BOUNDARY_TZ") or "UTC").strip()
PROGRESS_STREAK_MAX_RETRIES = _env_int("PROGRESS_STREAK_MAX_RETRIES", 5, 1)
PROGRESS_RECONCILE_GRACE_SECONDS = _env_int("PROGRESS_RECONCILE_GRACE_SECONDS", 300, 0)
PROGRESS_STREAK_MILESTONES = _env_milestones("PROGRESS_STREAK_MILESTONES", (3, 7, 14, 30))

SQLITE_PATH = os.environ.get("PROGRESS_SQLITE_PATH", os.path.join(os.path.dirname(os.path.abspath(__file__)), "progress.db"))

# Try to import Supabase client
try:
    from supabase import create_client, Client  # type: ignore
except Exception:
    create_client, Client = None, None


def _init_supabase(use_supabase: bool):
    url = os.environ.get("SUPABASE_URL")
    key = os.environ.get("SUPABASE_KEY")
    if not (use_supabase and create_client and url and key):
        return None
    try:
        return create_client(url, key)
    except Exception as e:
        print("⚠️ Could not init Supabase client:", e)
        return None


def get_current_user() -> Optional[dict]:
    """Identity comes from the auth layer in front of us via the Flask session."""
    user = session.get("user")
    if isinstance(user, dict) and user.get("id"):
        return user
    return None


def create_app(overrides: Optional[dict[str, Any]] = None) -> Flask:
    app = Flask(__name__)
    app.secret_key = os.environ.get("SECRET_KEY") or os.urandom(24)
    app.permanent_session_lifetime = timedelta(days=365)

    app.config.setdefault("USE_SUPABASE", USE_SUPABASE)
    app.config.setdefault("SQLALCHEMY_DATABASE_URI", os.environ.get("DATABASE_URL") or f"sqlite:///{SQLITE_PATH}")
    app.config.setdefault("SQLALCHEMY_TRACK_MODIFICATIONS", False)
    app.config.setdefault("PROGRESS_DAY_BOUNDARY_TZ", PROGRESS_DAY_BOUNDARY_TZ)
    app.config.setdefault("PROGRESS_STREAK_MAX_RETRIES", PROGRESS_STREAK_MAX_RETRIES)
    app.config.setdefault("PROGRESS_RECONCILE_GRACE_SECONDS", PROGRESS_RECONCILE_GRACE_SECONDS)
    app.config.setdefault("PROGRESS_STREAK_MILESTONES", PROGRESS_STREAK_MILESTONES)
    if overrides:
        app.config.update(overrides)

    # Fail at boot rather than on the first streak update.
    resolve_timezone(app.config["PROGRESS_DAY_BOUNDARY_TZ"])

    if "SUPABASE_CLIENT" not in app.config:
        app.config["SUPABASE_CLIENT"] = _init_supabase(bool(app.config["USE_SUPABASE"]))

    db.init_app(app)

    app.register_blueprint(create_progress_blueprint(get_current_user))

    @app.get("/healthz")
    def healthz():
        return jsonify(
            {
                "status": "ok",
                "supabase": bool(app.config.get("USE_SUPABASE") and app.config.get("SUPABASE_CLIENT")),
            }
        )

    with app.app_context():
        db.create_all()

    return app


if __name__ == "__main__":
    create_app().run(debug=_env_flag("FLASK_DEBUG", False), port=int(os.environ.get("PORT", "5000")))
