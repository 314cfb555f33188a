"""console script entrypoint for the registry guard CLI."""

from .cli import app


def run() -> int:
    app()
    return 0


if __name__ == "__main__":
    raise SystemExit(run())
