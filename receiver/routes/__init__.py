"""
Routes module for the telematics tracker Flask blueprints.
"""

from routes.accounts import accounts_bp
from routes.vehicles import vehicles_bp

__all__ = [
    "accounts_bp",
    "vehicles_bp",
]


def register_blueprints(app):
    """Register all blueprints with the Flask app."""
    app.register_blueprint(vehicles_bp, url_prefix="/api")
    app.register_blueprint(accounts_bp, url_prefix="/api")
