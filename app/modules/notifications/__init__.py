"""
Post-commit notification outbox.
"""
