"""Application state, commands and network collaborators."""
