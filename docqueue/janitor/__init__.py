"""
Janitor module.
Contains the periodic purge of acknowledged messages.
"""

from docqueue.janitor.main import Janitor, run

__all__ = ["Janitor", "run"]
