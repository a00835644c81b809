"""inferencemesh — provider discovery, health monitoring and error recovery."""

__version__ = "0.1.0"
