"""Mock Hevy API server for testing."""

from .app import DEFAULT_API_KEY, create_app, create_mock_app

__all__ = ["DEFAULT_API_KEY", "create_app", "create_mock_app"]
