"""Entry point for `python -m schema_engine.cli` and the `schema-engine` console script."""

from __future__ import annotations

from schema_engine.cli.app import app


def main() -> None:
    app()


if __name__ == "__main__":
    main()
