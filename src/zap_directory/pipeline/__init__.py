"""Trigger scheduling, aggregation and publishing."""
