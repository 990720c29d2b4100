"""Operational command-line tools (``python -m scripts.<name>``)."""
