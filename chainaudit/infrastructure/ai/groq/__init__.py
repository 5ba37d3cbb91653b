"""Groq completion client."""
