"""Guest agent, port discovery, image downloading and CLI helpers for Linux virtual machines."""

__version__ = "0.1.0"

__all__ = ["__version__"]