"""BazaarLens: marketplace scoring, manipulation detection and order book analytics."""

__version__ = "0.1.0"
