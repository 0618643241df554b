"""Deployment pipeline, backends and persistence."""
