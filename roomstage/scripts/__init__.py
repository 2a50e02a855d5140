"""Maintenance scripts (run with python -m roomstage.scripts.<name>)."""
