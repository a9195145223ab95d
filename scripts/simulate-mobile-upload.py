#!/usr/bin/env python3
"""
simulate-mobile-upload.py: Drive the mobile upload flow against a live API.

Requests presigned URLs, PUTs a small generated file to each, then confirms
the upload and prints the recorded test result.

Usage:
    python scripts/simulate-mobile-upload.py --api-key ti_sk_...
    python scripts/simulate-mobile-upload.py --api-key ti_sk_... --participant P-001
    python scripts/simulate-mobile-upload.py --api-url http://localhost:8787 --test-type BPPV
"""

import argparse
import json
import sys
import uuid
from datetime import datetime, timezone
from urllib.error import HTTPError, URLError
from urllib.request import Request, urlopen


# ANSI color codes
class C:
    RED = "\033[91m"
    GREEN = "\033[92m"
    YELLOW = "\033[93m"
    CYAN = "\033[96m"
    BOLD = "\033[1m"
    DIM = "\033[2m"
    RESET = "\033[0m"


SAMPLE_FILES = {
    "csv": ("results.csv", "text/csv", b"frequency,threshold\n1000,20\n2000,25\n"),
    "questions": ("answers.json", "application/json", b'{"dizziness": false}'),
}


def call_api(api_url: str, path: str, api_key: str, payload: dict) -> dict:
    """POST JSON to the API and return the decoded response."""
    req = Request(
        f"{api_url.rstrip('/')}{path}",
        data=json.dumps(payload).encode("utf-8"),
        headers={
            "Content-Type": "application/json",
            "Authorization": f"Bearer {api_key}",
        },
        method="POST",
    )
    with urlopen(req, timeout=15) as resp:
        return json.loads(resp.read().decode("utf-8"))


def put_file(url: str, content_type: str, body: bytes) -> int:
    req = Request(
        url,
        data=body,
        headers={"Content-Type": content_type, "x-amz-server-side-encryption": "AES256"},
        method="PUT",
    )
    with urlopen(req, timeout=30) as resp:
        return resp.status


def run(args: argparse.Namespace) -> None:
    test_id = args.test_id or f"sim-{uuid.uuid4().hex[:12]}"
    files = [
        {"fileType": ft, "fileName": name, "contentType": ctype}
        for ft, (name, ctype, _) in SAMPLE_FILES.items()
    ]

    print(f"\n{C.BOLD}Simulated Mobile Upload{C.RESET}")
    print(f"{C.DIM}{'=' * 60}{C.RESET}\n")
    print(f"  {C.BOLD}Test ID:{C.RESET}   {test_id}")
    print(f"  {C.BOLD}Test type:{C.RESET} {args.test_type}\n")

    intent = {"testId": test_id, "testType": args.test_type, "files": files}
    if args.participant:
        intent["participantId"] = args.participant
    presigned = call_api(args.api_url, "/v1/test-results/presigned-upload", args.api_key, intent)
    print(f"  {C.GREEN}Received {len(presigned['uploadUrls'])} upload URL(s){C.RESET}")

    uploaded = {}
    for file_type, target in presigned["uploadUrls"].items():
        _, content_type, body = SAMPLE_FILES[file_type]
        status = put_file(target["uploadUrl"], content_type, body)
        print(f"  {C.DIM}PUT {file_type:<10} -> HTTP {status}{C.RESET}")
        uploaded[file_type] = {"key": target["key"]}

    confirm = {
        "testId": test_id,
        "testType": args.test_type,
        "testDate": datetime.now(timezone.utc).isoformat(),
        "metadata": {"source": "simulate-mobile-upload"},
        "uploadedFiles": uploaded,
    }
    if args.participant:
        confirm["participantId"] = args.participant
    record = call_api(args.api_url, "/v1/test-results/confirm-upload", args.api_key, confirm)

    print(f"\n  {C.GREEN}Recorded test result {record['id']}{C.RESET}")
    print(f"  {C.DIM}{json.dumps(record, indent=2)}{C.RESET}\n")


def main() -> None:
    parser = argparse.ArgumentParser(description="Simulate the mobile upload flow")
    parser.add_argument("--api-url", default="http://localhost:8787", help="API base URL")
    parser.add_argument("--api-key", required=True, help="Bearer API key of the uploader")
    parser.add_argument("--test-type", default="AUDIOMETRY", help="Test type to report")
    parser.add_argument("--test-id", default=None, help="Test id (random if omitted)")
    parser.add_argument(
        "--participant", default=None, help="Participant id (admin uploads only)"
    )
    args = parser.parse_args()

    try:
        run(args)
    except HTTPError as e:
        body = e.read().decode("utf-8", errors="replace")[:300]
        print(f"  {C.RED}HTTP {e.code}:{C.RESET} {body}")
        sys.exit(1)
    except URLError as e:
        print(f"  {C.RED}Connection error:{C.RESET} {e.reason}")
        sys.exit(1)


if __name__ == "__main__":
    main()
