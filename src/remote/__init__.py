"""Remote storage layer.

This module maps storage URLs onto pluggable backends and moves cached
objects between the local cache, remotes, and external caches.
"""
