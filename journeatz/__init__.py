"""JournEatz: role-based food delivery dashboards over a small REST API."""

__version__ = "0.1.0"
