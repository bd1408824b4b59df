"""spindb: local database instances in Docker containers or sqlite files."""

__version__ = "0.1.0"
