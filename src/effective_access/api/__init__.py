"""
effective_access.api

API package for the effective access service.

Responsibilities:
- FastAPI app factory and router modules.
- API-layer dependency wiring and response models.
"""
