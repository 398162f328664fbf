"""Intent source (Controller) for the Static Route Agent."""
