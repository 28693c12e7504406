from __future__ import annotations

import argparse
import json
import sys

import requests
import yaml

from rdso.events import EventRecorder
from rdso.memstore import MemoryResourceStore, MemorySpecificationStore
from rdso.reconciler import PassOutcome, Reconciler


def _print(obj) -> None:
    print(json.dumps(obj, indent=2, ensure_ascii=False))


def render(path: str, name: str = "ords", namespace: str = "default") -> tuple[list[dict], dict]:
    """Dry-run one pass for the document at ``path`` against in-memory stores.

    The document is either a full RestDataServices object or just its spec.
    Returns the resulting manifests and the pass summary.
    """
    with open(path, encoding="utf-8") as f:
        doc = yaml.safe_load(f) or {}
    if "spec" in doc:
        metadata = doc.get("metadata") or {}
        name = metadata.get("name", name)
        namespace = metadata.get("namespace", namespace)
        doc = doc["spec"] or {}

    specs = MemorySpecificationStore()
    store = MemoryResourceStore()
    record = specs.put(name, doc, namespace=namespace)
    result = Reconciler(specs, store, EventRecorder(journal=False), journal=False).reconcile(record.identity)
    manifests = [obj.to_manifest() for obj in store.all()]
    return manifests, result.to_model().model_dump()


def main(argv: list[str] | None = None) -> int:
    p = argparse.ArgumentParser(description="RestDataServices Operator CLI")
    p.add_argument("--api", default="http://localhost:8000", help="API base URL")
    p.add_argument("--user", help="Admin user for mutating calls")
    p.add_argument("--password", help="Admin password for mutating calls")
    sub = p.add_subparsers(dest="cmd", required=True)

    sub.add_parser("instances", help="List instances and their last pass")

    s_st = sub.add_parser("status", help="Show one instance")
    s_st.add_argument("namespace")
    s_st.add_argument("name")

    s_rec = sub.add_parser("reconcile", help="Run a pass now")
    s_rec.add_argument("namespace")
    s_rec.add_argument("name")

    s_ev = sub.add_parser("events", help="Show events")
    s_ev.add_argument("--limit", type=int, default=20)

    s_pa = sub.add_parser("passes", help="Show pass history")
    s_pa.add_argument("--limit", type=int, default=20)

    s_re = sub.add_parser("render", help="Print the resources a document compiles to (offline)")
    s_re.add_argument("file")
    s_re.add_argument("--name", default="ords", help="Instance name when the document has no metadata")
    s_re.add_argument("--namespace", default="default")

    args = p.parse_args(argv)

    if args.cmd == "render":
        manifests, summary = render(args.file, name=args.name, namespace=args.namespace)
        print(yaml.safe_dump_all(manifests, sort_keys=False), end="")
        print(f"# {summary['outcome']}: created={summary['created']} message={summary['message']}", file=sys.stderr)
        return 0 if summary["outcome"] == PassOutcome.SUCCEEDED.value else 1

    base = args.api.rstrip("/")

    if args.cmd == "instances":
        _print(requests.get(f"{base}/instances", timeout=10).json())
        return 0

    if args.cmd == "status":
        r = requests.get(f"{base}/instances/{args.namespace}/{args.name}", timeout=10)
        _print(r.json())
        return 0 if r.ok else 1

    if args.cmd == "reconcile":
        auth = (args.user, args.password or "") if args.user else None
        r = requests.post(f"{base}/instances/{args.namespace}/{args.name}/reconcile", auth=auth, timeout=120)
        _print(r.json())
        return 0 if r.ok else 1

    if args.cmd == "events":
        _print(requests.get(f"{base}/events", params={"limit": args.limit}, timeout=10).json())
        return 0

    if args.cmd == "passes":
        _print(requests.get(f"{base}/passes", params={"limit": args.limit}, timeout=10).json())
        return 0

    return 2


if __name__ == "__main__":
    raise SystemExit(main(sys.argv[1:]))
