"""
Publishers package
"""
from marketplace.publishers.event_publisher import EventPublisher

__all__ = ["EventPublisher"]
