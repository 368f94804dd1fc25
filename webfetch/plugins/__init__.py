"""Plugins shipped with webfetch."""
