"""Allow `python -m vql`."""

from vql.cli import main

if __name__ == "__main__":
    main()
