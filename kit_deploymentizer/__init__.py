"""
Generates deployment manifest files for multiple clusters from templated
resource definitions.
"""

__all__ = [
    "config",
    "events",
    "exceptions",
    "generator",
    "image",
    "loader",
    "manifest",
    "merger",
    "plugin",
    "resource",
    "verify",
]
