"""Artifact tracking layer.

This module records content checksums of workspace and external artifacts
in tracker files and restores them from the local or external cache.
"""
