"""
docqueue

A message queue whose durable state lives in a shared database table.
Producers and consumers coordinate through single-row atomic updates,
giving at-least-once delivery with lease/ack semantics and dead-lettering.
"""

__version__ = "1.0.0"
