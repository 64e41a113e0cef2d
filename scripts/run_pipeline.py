#!/usr/bin/env python3
"""
Embedding pipeline runner.
Embeds pending messages in the background until interrupted.
"""

import argparse
import json
import signal
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from knowledge.core.config import validate_pipeline_config
from knowledge.core.db import init_db
from knowledge.core.pipeline import EmbeddingPipeline


def main():
    parser = argparse.ArgumentParser(
        description="Embed pending chat messages in the background",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s                       # Run until Ctrl+C
  %(prog)s --once                # Embed one batch and exit
  %(prog)s --batch-size 50 --cycle-delay 2

Environment variables:
- DB_PATH=./data/knowledge.db (database location)
- EMBED_PROVIDER=hash|sentence_transformers|ollama
- VECTOR_PROVIDER=sqlite|faiss
- PIPELINE_BATCH_SIZE, PIPELINE_CYCLE_DELAY_SEC, PIPELINE_STARTUP_DELAY_SEC
        """
    )
    parser.add_argument("--once", action="store_true", help="Run a single cycle and exit")
    parser.add_argument("--batch-size", type=int, help="Messages fetched per cycle")
    parser.add_argument("--cycle-delay", type=float, help="Seconds between cycles")
    parser.add_argument("--startup-delay", type=float, help="Seconds to wait before the first cycle")
    parser.add_argument("--json", "-j", action="store_true", help="Print the final status as JSON")
    args = parser.parse_args()

    issues = validate_pipeline_config()
    if issues:
        print(f"❌ Pipeline configuration invalid: {issues}")
        sys.exit(1)

    init_db()

    try:
        pipeline = EmbeddingPipeline(
            batch_size=args.batch_size,
            cycle_delay=args.cycle_delay,
            startup_delay=args.startup_delay
        )
    except ValueError as e:
        print(f"❌ {e}")
        sys.exit(1)

    if args.once:
        report = pipeline.run_cycle()
        print(f"✓ Cycle complete: {report.embedded} embedded, {report.failed} failed, {report.skipped} skipped")
    else:
        def handle_signal(signum, frame):
            print("\n🛑 Stopping embedding pipeline...")
            pipeline.stop()

        signal.signal(signal.SIGINT, handle_signal)
        signal.signal(signal.SIGTERM, handle_signal)

        print("🚀 Starting embedding pipeline (Ctrl+C to stop)")
        pipeline.run()

    status = pipeline.get_status()
    if args.json:
        print(json.dumps(status, indent=2))
    else:
        print(f"🏁 Pipeline stopped after {status['cycles']} cycles, "
              f"{status['total_embedded']} embedded, {status['pending']} pending")


if __name__ == "__main__":
    main()
