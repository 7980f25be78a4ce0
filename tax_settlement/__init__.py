"""Payment settlement core for municipal property tax."""

__version__ = "0.1.0"
