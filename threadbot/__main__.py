"""Entry point for running threadbot as a module."""

from threadbot.cli.commands import app

if __name__ == "__main__":
    app()
