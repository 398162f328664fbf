"""Configuration loading for the Static Route Agent."""
