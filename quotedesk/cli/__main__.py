from __future__ import annotations

import sys

from . import quotes_cli


def main() -> int:
    return quotes_cli.main()


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
