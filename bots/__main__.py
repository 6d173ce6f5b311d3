"""Entry point for running the bot via python -m bots"""

from bots.runtime import run

if __name__ == "__main__":
    run()
