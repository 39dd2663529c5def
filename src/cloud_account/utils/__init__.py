"""Shared utilities for cloud-account."""
