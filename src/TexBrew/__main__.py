"""Entrypoint for `python -m TexBrew`."""

from .cli import main

if __name__ == "__main__":
    main()
