from __future__ import annotations

import argparse
import json
import sys

import requests


def _print(obj) -> None:
    print(json.dumps(obj, indent=2, ensure_ascii=False))


def main(argv: list[str] | None = None) -> int:
    p = argparse.ArgumentParser(description="KafkaChannel dispatcher reconciler CLI")
    p.add_argument("--api", default="http://localhost:8000", help="API base URL")
    sub = p.add_subparsers(dest="cmd", required=True)

    sub.add_parser("channels", help="List kafkachannels and their conditions")

    s_ev = sub.add_parser("events", help="Show events")
    s_ev.add_argument("--limit", type=int, default=20)
    s_ev.add_argument("--subject", help="Only events about this namespace/name")

    s_rec = sub.add_parser("reconcile", help="Queue a kafkachannel for reconciliation")
    s_rec.add_argument("--namespace", required=True)
    s_rec.add_argument("--name", required=True)

    s_prop = sub.add_parser("propagate", help="Re-evaluate every kafkachannel using a kafka secret")
    s_prop.add_argument("--secret", required=True)

    args = p.parse_args(argv)

    base = args.api.rstrip("/")

    if args.cmd == "channels":
        _print(requests.get(f"{base}/channels", timeout=10).json())
        return 0

    if args.cmd == "events":
        params = {"limit": args.limit}
        if args.subject:
            params["subject"] = args.subject
        _print(requests.get(f"{base}/events", params=params, timeout=10).json())
        return 0

    if args.cmd == "reconcile":
        r = requests.post(f"{base}/channels/{args.namespace}/{args.name}/reconcile", timeout=10)
        _print(r.json())
        return 0 if r.ok else 1

    if args.cmd == "propagate":
        r = requests.post(f"{base}/secrets/{args.secret}/propagate", timeout=10)
        _print(r.json())
        return 0 if r.ok else 1

    return 2


if __name__ == "__main__":
    raise SystemExit(main(sys.argv[1:]))
