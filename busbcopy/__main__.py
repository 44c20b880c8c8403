import sys

from busbcopy.main import main

if __name__ == "__main__":
    sys.exit(main())
