"""Progress & rewards engine for study tracking"""

__version__ = "1.0.0"
