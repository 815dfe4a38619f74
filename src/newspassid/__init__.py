"""NewsPassID — first-party visitor identity and audience segments for publishers."""

__version__ = "0.1.0"
