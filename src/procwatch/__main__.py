"""procwatch entry point.

Supports: python -m procwatch
"""

from .app import main

if __name__ == "__main__":
    main()
