"""Pipeline stage layer.

This module parses declarative stage files, tracks stage inputs and outputs
in a lock file, and executes stages whose inputs changed.
"""
