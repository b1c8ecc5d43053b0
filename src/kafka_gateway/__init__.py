"""
Resilience layer over a Kafka REST gateway.

Consumer keeps a topic subscription alive across gateway outages and
missing topics; Producer publishes Avro records with bounded retry.
"""

from kafka_gateway.connection import set_gateway_url
from kafka_gateway.consumer import Consumer
from kafka_gateway.producer import Producer

__version__ = "0.1.0"

__all__ = ["Consumer", "Producer", "set_gateway_url"]
