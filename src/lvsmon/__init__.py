"""LVS Health Monitor: keeps an LVS destination pool in sync with backend packet loss."""

__version__ = "1.0.0"
