"""Workspace layer: labels, templates, engine adapter and lifecycle manager."""
