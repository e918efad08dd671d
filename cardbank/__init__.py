"""Card banking building blocks: API gateway, cards, card authorisation and notifications."""

__version__ = "0.1.0"