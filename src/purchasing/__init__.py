"""Card purchase capture over a payment gateway, persisted in document stores."""

__version__ = "0.1.0"
