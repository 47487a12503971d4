"""Infrastructure layer — SQLite persistence via SQLAlchemy Core.

This layer depends on stdlib and SQLAlchemy only. Models are addressed by
their plain string names so nothing here imports from domain or services.
"""
