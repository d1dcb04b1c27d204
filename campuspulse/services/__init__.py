"""Services layer for the CampusPulse feedback analysis core."""
