"""Command handlers for the unisrv CLI."""
