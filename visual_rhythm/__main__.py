from __future__ import annotations

from .app import run


def main() -> int:
    """Entry point for the ``visual-rhythm`` script and ``python -m visual_rhythm``."""
    return run()


if __name__ == "__main__":
    raise SystemExit(main())
