"""Merge, scheduling, tokscale and upload services."""
