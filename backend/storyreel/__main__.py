"""CLI entry point for python -m storyreel"""
from storyreel.cli.commands import app

if __name__ == "__main__":
    app()
