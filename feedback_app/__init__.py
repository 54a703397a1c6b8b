"""Feedback application package."""
