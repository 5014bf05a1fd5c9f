"""e-Petitions signature verification and anti-fraud service."""

__version__ = "1.0.0"
