"""
Taskiq task modules.

- polling: Gmail poll sweep.
"""

__all__ = ["polling"]
