"""Hourly CDN usage aggregation from S3 access logs."""

__version__ = "0.1.0"
