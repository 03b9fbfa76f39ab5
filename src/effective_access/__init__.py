"""
effective_access

Resolves the effective Azure role assignments of a directory identity
through its (possibly cyclic) security-group hierarchy.

Responsibilities:
- Expose package version metadata.
"""

__all__ = ["__version__"]

__version__ = "0.1.0"


# --- Module Notes -----------------------------------------------------------
# `api.app.create_app` reports this version in the OpenAPI document.
