"""Inbox/outbox event storage on PostgreSQL and a consumer loop for Kafka-style messaging."""

__version__ = "0.1.0"