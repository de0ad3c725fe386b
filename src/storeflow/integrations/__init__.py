"""Celery integration for triggered and scheduled runs."""
