"""
Core package init for geoface.

Face enrollment and live recognition with optional location tagging.
"""

__all__ = [
    "capture",
    "config",
    "detectors",
    "engine",
    "errors",
    "geo",
    "guidance",
    "recognition",
    "io_utils",
    "types",
]
