#!/usr/bin/env python3
"""Start a run from the command line. Prints the goal, each step's delegation and output, and the consolidated result."""
import argparse
import json
import os
import sys
from typing import Any

import httpx

ORCHESTRATOR_URL = os.environ.get("ORCHESTRATOR_BASE_URL", "http://127.0.0.1:8000")


def _trunc(s: str, max_len: int = 100) -> str:
    s = str(s)
    return (s[:max_len] + "…") if len(s) > max_len else s


def _trace_request(method: str, url: str, body: dict | None, trace: bool) -> None:
    if not trace:
        return
    print(f"[REQUEST] {method} {url}", flush=True)
    if body is not None:
        print("[REQUEST BODY]", flush=True)
        print(json.dumps(body, indent=2), flush=True)
    print(flush=True)


def _trace_response(status: int, body: Any, trace: bool, max_body_len: int = 2000) -> None:
    if not trace:
        return
    print(f"[RESPONSE] {status}", flush=True)
    if body is not None:
        raw = json.dumps(body, indent=2) if isinstance(body, (dict, list)) else str(body)
        if len(raw) > max_body_len:
            raw = raw[:max_body_len] + "\n… (truncated)"
        print(raw, flush=True)
    print("---", flush=True)


def _body(r: httpx.Response) -> Any:
    try:
        return r.json()
    except ValueError:
        return r.text


def _parse_context(raw: str | None) -> dict | None:
    if not raw:
        return None
    ctx = json.loads(raw)
    if not isinstance(ctx, dict):
        raise ValueError("--context must be a JSON object")
    return ctx


def print_trace(run: dict) -> None:
    for step in run.get("steps") or []:
        sid = step.get("id", "?")
        agent = step.get("agent_name", "?")
        print(f"  [{sid}] → {agent}: {_trunc(step.get('description') or '', 100)}", flush=True)
        status = step.get("status")
        if status == "completed":
            out = json.dumps(step.get("output"), ensure_ascii=False)
            dur = step.get("duration")
            dur_str = f" ({dur} ms)" if dur is not None else ""
            retries = step.get("retry_count") or 0
            retry_str = f" after {retries} retr{'y' if retries == 1 else 'ies'}" if retries else ""
            print(f"  [{sid}] ← {agent}: {_trunc(out, 150)}{dur_str}{retry_str}", flush=True)
        else:
            print(f"  [{sid}] ← {agent}: {status} {step.get('error') or ''}".rstrip(), flush=True)
    print("---", flush=True)


def main():
    parser = argparse.ArgumentParser(description="Run an orchestrator on a goal and print the step trace and final result.")
    parser.add_argument("goal", nargs="*", help="Goal text (or pass as single argument)")
    parser.add_argument("--orchestrator", "-o", required=True, help="Orchestrator agent id")
    parser.add_argument("--context", help="Extra context as a JSON object")
    parser.add_argument("--url", default=ORCHESTRATOR_URL, help="Orchestrator base URL")
    parser.add_argument("--timeout", type=float, default=600, help="Seconds to wait for the run to finish")
    parser.add_argument("--trace", action="store_true", help="Print each URL, request body and response")
    args = parser.parse_args()
    goal = " ".join(args.goal).strip()
    if not goal:
        print('Usage: python scripts/run_cli.py -o <orchestrator_id> "Your goal here"', file=sys.stderr)
        sys.exit(1)

    base = args.url.rstrip("/")
    trace = args.trace
    try:
        body = {"orchestrator_id": args.orchestrator, "goal": goal, "context": _parse_context(args.context), "wait": True}
        print("Goal:", goal, flush=True)
        print("---", flush=True)

        post_url = f"{base}/runs"
        _trace_request("POST", post_url, body, trace)
        r = httpx.post(post_url, json=body, timeout=args.timeout)
        data = _body(r)
        _trace_response(r.status_code, data, trace)
        r.raise_for_status()
        run_id = data.get("run_id")
        print("Run ID:", run_id, flush=True)
        print("Status:", data.get("status"), flush=True)

        get_url = f"{base}/runs/{run_id}"
        _trace_request("GET", get_url, None, trace)
        tr = httpx.get(get_url, timeout=10)
        run = _body(tr)
        _trace_response(tr.status_code, run, trace)
        if tr.status_code == 200 and isinstance(run, dict):
            print_trace(run)

        if data.get("consolidated_output"):
            print("Result:", flush=True)
            print(data["consolidated_output"], flush=True)
        if data.get("error"):
            print("Error:", data["error"], file=sys.stderr)
    except httpx.ConnectError:
        print(f"Cannot reach orchestrator at {args.url}. Is it running?", file=sys.stderr)
        sys.exit(1)
    except (httpx.HTTPError, ValueError) as e:
        print(e, file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
