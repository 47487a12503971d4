"""Domain layer — enumerations, lifecycle maps, command envelope, payload schemas.

This layer depends only on stdlib and pydantic.
It must never import from services, infrastructure, commands, or config.
"""
