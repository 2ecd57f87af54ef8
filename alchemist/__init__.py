"""Data cleaning and scheduling-rule workspace service."""
