"""Job broker for the asynchronous geocoding path."""

from locallens.lib.broker.redis_stream import BrokerMessage, BrokerUnavailableError, RedisStreamBroker

__all__ = ["BrokerMessage", "BrokerUnavailableError", "RedisStreamBroker"]
