"""CampusPulse: sentiment aggregation and dataset import for campus feedback."""

__version__ = "0.1.0"
