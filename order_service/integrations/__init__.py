"""Clients for sibling services and the message broker."""
from .broker import RabbitMQConsumer, RabbitMQPublisher
from .deliveries import DeliveryClient
from .pricing import PricingClient

__all__ = ["DeliveryClient", "PricingClient", "RabbitMQConsumer", "RabbitMQPublisher"]
