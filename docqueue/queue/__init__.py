"""
Queue module.
Contains the lease protocol built on the document store.
"""

from docqueue.queue.core import Queue, new_ack, utcnow

__all__ = ["Queue", "new_ack", "utcnow"]
