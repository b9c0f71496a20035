"""
CLI to replay a recorded video through face monitoring -> JSON.
"""
from __future__ import annotations
import argparse, json
from liveness.config import Settings
from liveness.replay import replay_video

def main():
    p = argparse.ArgumentParser()
    p.add_argument("--video", required=True, help="Path to input video")
    p.add_argument("--rate-hz", type=float, default=None, help="Sampling rate (default FACE_SAMPLE_RATE_HZ)")
    p.add_argument("--out", default="output/liveness.json", help="Path to output JSON")
    args = p.parse_args()

    settings = Settings()
    result = replay_video(args.video, settings, rate_hz=args.rate_hz)
    print(json.dumps(result["summary"], indent=2, ensure_ascii=False))

    # Also write to file
    import os
    os.makedirs(os.path.dirname(args.out) or ".", exist_ok=True)
    with open(args.out, "w", encoding="utf-8") as f:
        json.dump(result, f, indent=2, ensure_ascii=False)
    print(f"✅ Replay written to {args.out}")

if __name__ == "__main__":
    main()
