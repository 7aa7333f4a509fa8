"""
Taskiq worker package.

Provides broker configuration and the background poll sweep that runs
alongside the webhook API.
"""

__all__ = ["broker"]
