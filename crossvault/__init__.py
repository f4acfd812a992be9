"""
CrossVault

Cross-chain pool price watcher and vault settlement pipeline.
"""

__version__ = "0.1.0"
