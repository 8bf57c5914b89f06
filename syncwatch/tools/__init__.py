"""Clients for GitHub, Jira and Ollama."""
