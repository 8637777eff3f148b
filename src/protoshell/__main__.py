"""ProtoShell CLI bootstrap."""

from protoshell.cli import app

if __name__ == "__main__":
    app()
