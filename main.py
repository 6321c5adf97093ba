"""Night Train — launcher. Starts the game backend with uvicorn."""

import argparse
import logging
import os
import subprocess
import sys
from pathlib import Path

from dotenv import load_dotenv

ROOT = Path(__file__).parent
load_dotenv(ROOT / ".env")

HOST = os.getenv("HOST", "0.0.0.0")
BACKEND_PORT = os.getenv("BACKEND_PORT", "13013")


def main():
    parser = argparse.ArgumentParser(description="Night Train launcher")
    parser.add_argument("--data-dir", type=Path, default=None,
                        help="Save and settings directory (default: ./data)")
    parser.add_argument("--scenes", default=None,
                        help="Scene document path or URL (default: presets/scenes.json)")
    parser.add_argument("--new-game", action="store_true",
                        help="Delete the existing save before starting")
    parser.add_argument("--reload", action="store_true",
                        help="Restart the server on code changes")
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")

    if args.new_game:
        from night_train.storage import Storage
        Storage(args.data_dir or ROOT / "data").clear_world_state()
        print("Save cleared.")

    # Build env for the server so it picks up the same data dir and scenes
    env = os.environ.copy()
    if args.data_dir:
        env["DATA_DIR"] = str(args.data_dir.resolve())
    if args.scenes:
        env["SCENES_PATH"] = args.scenes

    cmd = ["uvicorn", "backend.app:app", "--host", HOST, "--port", BACKEND_PORT]
    if args.reload:
        cmd.append("--reload")

    print(f"Starting backend on http://localhost:{BACKEND_PORT} ...")
    proc = subprocess.Popen(cmd, cwd=ROOT, env=env)
    try:
        sys.exit(proc.wait())
    except KeyboardInterrupt:
        print("\nShutting down...")
        proc.terminate()
        proc.wait()


if __name__ == "__main__":
    main()
