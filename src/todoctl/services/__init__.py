"""Service layer — router, validation, integrity, and audit.

Services may import from domain and infrastructure layers.
They must never import from commands or output.
"""
