"""
Round Tracker: round boundary detection and replay reconstruction for game server statistics.
"""
__version__ = "1.0.0"
