"""
effective_access.clients

Upstream client package.

Responsibilities:
- Implement the directory and authorization query protocols over httpx.
"""

# Package marker.


# --- Module Notes -----------------------------------------------------------
# The resolver and query client depend on `resolution.ports`, not on these classes.
