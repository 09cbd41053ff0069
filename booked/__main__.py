"""
Convenience entry point for running booked directly.

Usage: python -m booked [command] [options]
"""

from .cli.app import app

if __name__ == "__main__":
    app()
