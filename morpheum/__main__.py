"""
Entry point for running morpheum as a module: python -m morpheum
"""

from morpheum.cli.commands import app

if __name__ == "__main__":
    app()
