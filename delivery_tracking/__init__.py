"""
Suivi de livraison temps reel et prediction ETA / Real-time delivery tracking and ETA prediction.
"""

__version__ = "0.1.0"
