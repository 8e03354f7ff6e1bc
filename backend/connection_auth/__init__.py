"""Identity and session security service for The Connection"""

__version__ = "0.1.0"
