"""Showcase desktop tool backend packages."""
