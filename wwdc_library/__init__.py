"""Local sync engine for the WWDC session library."""

__version__ = "1.0.0"
