"""Module entrypoint for `python -m stackrunner`."""

from stackrunner.cli import run

if __name__ == "__main__":
    raise SystemExit(run())
