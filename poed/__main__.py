import sys

from poed.daemon import main

if __name__ == "__main__":
    sys.exit(main())
