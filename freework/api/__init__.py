"""Mock backend API package."""
