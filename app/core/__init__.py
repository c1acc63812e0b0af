"""Configuration, security and logging package."""
