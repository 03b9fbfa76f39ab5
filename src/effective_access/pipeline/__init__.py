"""
effective_access.pipeline

LangGraph state machine for one end-to-end access resolution.

Responsibilities:
- Sequence direct-group lookup, transitive closure, role assignment query and assembly.
- Record stage transitions on a per-run tracker.
"""

# Package marker.
