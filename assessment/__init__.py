"""Proctored exam assessment service."""
