"""ManaFlood: a local Magic: The Gathering card database with a filter compiler."""

__version__ = "0.1.0"
