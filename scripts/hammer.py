import argparse
import sys
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.append(str(ROOT))

from lockguard.audit import MemoryAuditSink
from lockguard.config import load_config
from lockguard.engine import LockoutEngine
from lockguard.policy import LockoutPolicy


def hammer(args):
    cfg = load_config(args.config)
    policy = LockoutPolicy.from_config(cfg)
    if args.max_attempts:
        policy = LockoutPolicy(args.max_attempts, policy.lockout_duration_s)
    sink = MemoryAuditSink()
    engine = LockoutEngine(policy, sink)

    barrier = threading.Barrier(args.workers)

    def fail(_):
        barrier.wait()
        return engine.record_failure(args.identifier, args.username)

    start = time.perf_counter()
    with ThreadPoolExecutor(max_workers=args.workers) as pool:
        results = list(pool.map(fail, range(args.workers)))
    elapsed_ms = (time.perf_counter() - start) * 1000

    peak = max(r.failure_count for r in results)
    status = engine.check_and_consume(args.identifier)
    lockouts = [e for e in sink.events if e.kind == "lockout-triggered"]

    print(f"{args.workers} concurrent failures against {args.identifier} in {elapsed_ms:.1f}ms")
    print(f"peak failure_count={peak} (max_attempts={policy.max_attempts})")
    print(f"locked={status.locked} remaining={status.remaining_seconds}s lockout events={len(lockouts)}")
    print(f"stats={engine.stats().model_dump()}")

    expected = 1 if args.workers >= policy.max_attempts else 0
    if peak > policy.max_attempts or len(lockouts) != expected:
        print("FAIL: concurrent failures broke the lockout threshold")
        return 1
    print("OK")
    return 0


def main():
    parser = argparse.ArgumentParser(description="Fire concurrent failures at one identifier")
    parser.add_argument("identifier", nargs="?", default="203.0.113.9")
    parser.add_argument("--username", default="victim")
    parser.add_argument("--workers", type=int, default=64, help="number of concurrent failures")
    parser.add_argument("--max-attempts", type=int, default=0, help="override the configured threshold")
    parser.add_argument("--config", default="config.json", help="path to config file")
    args = parser.parse_args()
    if args.workers < 2:
        parser.error("--workers must be at least 2")
    sys.exit(hammer(args))


if __name__ == "__main__":
    main()
