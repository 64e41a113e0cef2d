#!/usr/bin/env python3
"""
Search past conversations from the command line.
"""

import argparse
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from knowledge.core.config import validate_search_config
from knowledge.core.db import init_db
from knowledge.core.errors import GenerationError, StorageError
from knowledge.core.search_service import search_conversation_history


def main():
    parser = argparse.ArgumentParser(description="Find past messages similar to a query")
    parser.add_argument("query", help="Text to search for")
    parser.add_argument("--top-k", "-k", type=int, help="Maximum number of matches")
    parser.add_argument("--min-score", "-s", type=float, help="Minimum cosine similarity (0-1)")
    args = parser.parse_args()

    issues = validate_search_config()
    if issues:
        print(f"❌ Search configuration invalid: {issues}")
        sys.exit(1)

    init_db()

    try:
        print(search_conversation_history(args.query, top_k=args.top_k, min_score=args.min_score))
    except ValueError as e:
        print(f"❌ Invalid search options: {e}")
        sys.exit(1)
    except (GenerationError, StorageError) as e:
        print(f"💥 Search failed: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
