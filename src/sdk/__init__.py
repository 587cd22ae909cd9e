"""High-level Python SDK over tracking, pipelines, and experiments."""
