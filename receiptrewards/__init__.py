"""
Receipt Rewards: receipt verification and visit-based loyalty rewards.
"""

__version__ = "0.1.0"
