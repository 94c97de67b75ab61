"""Logging and metrics for SiteKeeper."""
