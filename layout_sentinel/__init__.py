"""Layout Sentinel: structural visual regression checks for web pages."""

__version__ = "0.4.0"
