"""Middleware."""
