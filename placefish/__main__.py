import sys

from .uci import engine_main

if __name__ == "__main__":
    sys.exit(engine_main())
