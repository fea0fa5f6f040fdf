"""
Allows the package to be run as a script.

Example:
    python -m devcerts create --trust
"""

from .cert_cli import app

if __name__ == "__main__":
    app()
