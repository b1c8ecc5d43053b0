"""Shared error types and logging helpers for kafka_gateway."""
