"""repokit: async repository facade over SQLAlchemy with a thin FastAPI host."""

__version__ = "0.1.0"
