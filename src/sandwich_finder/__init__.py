"""Sandwich bracket detection and validator attribution for Raydium V4 flow."""

__version__ = "0.1.0"
