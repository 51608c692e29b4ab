"""
Entry point for the adaptive question recommender CLI.

Run with:
    python main.py recommend --learner learner.json --catalog catalog.json
    python main.py strategies
"""
import sys
from pathlib import Path

# Add project root to path for imports
sys.path.insert(0, str(Path(__file__).parent))

from src.cli.main import main

if __name__ == "__main__":
    main()
