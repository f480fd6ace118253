#!/usr/bin/env python
"""
Script to run the RabbitMQ notification consumer
"""
from marketplace.consumers.event_consumer import start_consumer
from marketplace.logging_config import configure_logging

if __name__ == "__main__":
    configure_logging()
    start_consumer()
