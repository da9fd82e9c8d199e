"""Backend for the municipal urban climate planning dashboard."""

__version__ = "0.1.0"
