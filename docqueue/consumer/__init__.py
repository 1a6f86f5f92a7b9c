"""
Consumer module.
Contains the message consumer and its handler registry.
"""

from docqueue.consumer.main import Consumer, run

__all__ = ["Consumer", "run"]
