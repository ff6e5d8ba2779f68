"""retrotimer: a focus timer with reflective sessions."""

__version__ = "0.1.0"
