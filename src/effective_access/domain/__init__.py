"""
effective_access.domain

Domain package: value types and error taxonomy.
"""

# Package marker.
