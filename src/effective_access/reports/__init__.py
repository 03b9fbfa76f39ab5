"""
effective_access.reports

Report assembly package.
"""

# Package marker.
