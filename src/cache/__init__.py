"""Content-addressed cache layer.

This module stores immutable file and directory objects keyed by checksum.
It backs tracked artifacts, stage outputs, and experiment checkpoints.
"""
