"""
effective_access.resolution

Core resolution package.

Responsibilities:
- Group hierarchy resolution (transitive closure).
- Role assignment querying with pagination, throttling and retries.
"""

# Package marker.


# --- Module Notes -----------------------------------------------------------
# Modules here depend only on the protocols in `ports`, never on HTTP clients.
