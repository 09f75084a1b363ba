"""Observability for the memo service.

Request IDs + structlog contextvars for logs, plus an in-process metric
registry exposed at /metrics in the Prometheus text format.
"""
