"""poed - PoE port budget control daemon."""

__version__ = "1.0.0"
