"""Experiment checkpoints, refs, run lifecycle, and metrics."""
