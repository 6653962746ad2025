"""Reelforge: AI segment generation and clip-loop rendering service."""
