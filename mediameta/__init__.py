# mediameta/__init__.py
"""
Media-metadata sources built on a polite fetch layer (throttling, robots.txt,
block detection, retries) and a persistent TTL cache.
"""

__version__ = "0.1.0"
