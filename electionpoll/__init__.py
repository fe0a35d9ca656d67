"""Verified public polls with a fair winner lottery."""
