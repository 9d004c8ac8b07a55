"""Shared Flask extensions for the progress service."""

from flask_sqlalchemy import SQLAlchemy

# Bound in app.create_app so models and stores can import `db` without the app.
db = SQLAlchemy()
