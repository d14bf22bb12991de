"""
mdfetch: fetch web pages as quality-checked markdown references.
"""

__version__ = "0.1.0"
