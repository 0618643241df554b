"""Shared utilities for Deployotron."""
