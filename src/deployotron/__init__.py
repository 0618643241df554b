"""Deployotron: deploy git repositories as containerized cloud services."""

__version__ = "0.3.0"
