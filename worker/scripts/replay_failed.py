import logging
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from harvester.core.callback import FAILED_DIR, replay_failed_payloads  # noqa: E402

logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s - %(message)s")

folder = Path(sys.argv[1]) if len(sys.argv) > 1 else FAILED_DIR
replayed, failing = replay_failed_payloads(folder)
print("Replayed", replayed, "payloads;", failing, "still failing")
