"""Human presence verification for forum content creation."""

__version__ = "0.1.0"
