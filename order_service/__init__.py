"""Order service: order lifecycle kept consistent across the database and the broker."""

__version__ = "0.1.0"
