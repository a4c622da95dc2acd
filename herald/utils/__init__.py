"""Utility modules for Herald."""
