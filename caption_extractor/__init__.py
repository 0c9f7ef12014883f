"""Video metadata and caption transcript extraction for YouTube and Bilibili."""

__version__ = "0.3.0"
