"""Expose API endpoint routers."""

from app.api.endpoints import crawler, discovery, jobs, recommendations

__all__ = ["crawler", "discovery", "jobs", "recommendations"]
