"""Core domain: models, controller pipeline, runtime, reliability."""
