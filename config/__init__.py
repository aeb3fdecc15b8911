"""Forecast configuration."""
