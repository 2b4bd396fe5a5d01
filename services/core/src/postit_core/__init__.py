"""
PostIt Core Service: depth and color silhouettes rendered as mosaic tiles,
with a periodic text overlay.
"""

__version__ = "0.1.0"
