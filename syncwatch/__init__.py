"""syncwatch - keeps GitHub pull requests and project-management tasks in sync."""

__version__ = "0.1.0"
