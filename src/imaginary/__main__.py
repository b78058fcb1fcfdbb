"""
Entry point: `python -m imaginary -p 8088 -cors -gzip`.

The only place in the package that terminates the process.
"""

import sys

from .bootstrap import Bootstrap


def main():
    sys.exit(Bootstrap().run(sys.argv[1:]))


if __name__ == "__main__":
    main()
