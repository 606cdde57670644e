"""MySensors serial gateway bridge."""

__version__ = "1.0.0"
