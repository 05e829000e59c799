"""
Workshop Tracker Backend - HTTP adapter for the production dashboard.

This package provides a FastAPI backend that reads orders and production
logs from the log store and serves timeline breakdowns and archive
durations to the dashboard frontend.
"""
