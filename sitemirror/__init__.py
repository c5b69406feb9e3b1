"""
Site Mirror

A multi-worker website mirroring crawler with resumable checkpoints.
"""

__version__ = "1.0.0"
__description__ = "A concurrent website mirroring crawler with checkpoint/resume support"
