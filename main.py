"""
Routine Tracker — Entry Point.

Single entry point: `python main.py` starts the user sync daemon.
"""

from src.service.runner import main

if __name__ == "__main__":
    main()
