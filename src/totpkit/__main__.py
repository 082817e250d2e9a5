"""Allow ``python -m totpkit``."""

from totpkit.cli import main

if __name__ == "__main__":
    main()
