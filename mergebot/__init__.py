"""Webhook service that runs try-merges of GitHub pull requests on bot commands."""

__version__ = "0.1.0"