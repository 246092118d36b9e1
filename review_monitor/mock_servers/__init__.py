"""Mock collaborator servers for testing."""

from .app import create_apify_app, create_app, create_classifier_app

__all__ = ["create_apify_app", "create_app", "create_classifier_app"]
