"""
Integration tests for the outputmatcher library.

These tests require real Kafka, Redis and RabbitMQ brokers, provisioned via
testcontainers.

Tests are skipped automatically if required infrastructure is not available.

Run integration tests:
    pytest tests/integration/ -v

Run only Kafka tests:
    pytest tests/integration/ -v -m kafka

Skip integration tests:
    pytest tests/ -v -m "not integration"
"""
