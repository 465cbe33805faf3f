"""Keep your Mac awake for a while, or until a process exits."""

__version__ = "0.1.0"
