"""Allow `python -m wechat_archive` to invoke the CLI entry-point."""

from .cli import app


def main() -> None:
    app(prog_name="wechat-archive")


if __name__ == "__main__":  # pragma: no cover - manual execution path
    main()
