"""exec-stage entry point.

Supports: python -m exec_stage
"""

from .app import main

if __name__ == "__main__":
    main()
