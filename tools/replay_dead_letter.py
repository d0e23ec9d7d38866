"""Inspect and replay dead-lettered webhook events through the admin API."""

from __future__ import annotations

import argparse
import json
import os
import sys
from typing import Any, Dict, Iterable, Optional

import requests


def _request(
    session: requests.Session,
    method: str,
    host: str,
    path: str,
    *,
    secret: str,
    **kwargs: Any,
) -> requests.Response:
    url = host.rstrip("/") + path
    headers = kwargs.pop("headers", {})
    headers["X-Internal-Auth"] = secret
    resp = session.request(method, url, headers=headers, timeout=30, **kwargs)
    if resp.status_code >= 400:
        raise RuntimeError(f"{method} {path} failed: {resp.status_code} {resp.text}")
    return resp


def list_dead_letters(
    session: requests.Session,
    host: str,
    *,
    secret: str,
    tenant_id: Optional[str] = None,
    pending_only: bool = False,
    limit: int = 20,
) -> Dict[str, Any]:
    params: Dict[str, Any] = {"limit": limit}
    if tenant_id:
        params["tenant_id"] = tenant_id
    if pending_only:
        params["retried"] = "false"
    return _request(
        session, "GET", host, "/api/admin/dead-letters", secret=secret, params=params
    ).json()


def retry_dead_letter(
    session: requests.Session, host: str, *, secret: str, record_id: int
) -> Dict[str, Any]:
    return _request(
        session, "POST", host, f"/api/admin/dead-letters/{record_id}/retry", secret=secret
    ).json()


def parse_args(argv: Optional[Iterable[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("--host", default="http://localhost:8000", help="Relay base URL")
    parser.add_argument(
        "--secret",
        default=os.getenv("INTERNAL_AUTH_SECRET"),
        help="Value of the X-Internal-Auth header (defaults to INTERNAL_AUTH_SECRET)",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    list_parser = subparsers.add_parser("list", help="List dead letters")
    list_parser.add_argument("--tenant-id")
    list_parser.add_argument("--pending", action="store_true", help="Only entries not yet retried")
    list_parser.add_argument("--limit", type=int, default=20)

    retry_parser = subparsers.add_parser("retry", help="Replay dead letters by id")
    retry_parser.add_argument("ids", type=int, nargs="+")

    return parser.parse_args(argv)


def main(argv: Optional[Iterable[str]] = None) -> int:
    args = parse_args(argv)
    if not args.secret:
        print("--secret or INTERNAL_AUTH_SECRET is required", file=sys.stderr)
        return 2
    session = requests.Session()

    if args.command == "list":
        payload = list_dead_letters(
            session,
            args.host,
            secret=args.secret,
            tenant_id=args.tenant_id,
            pending_only=args.pending,
            limit=args.limit,
        )
        for item in payload.get("items", []):
            print(
                f"{item['id']}\t{item['tenantId']}\t{item['eventType']}\t"
                f"retried={item['retried']}\t{item['errorMessage']}"
            )
        print(f"total={payload.get('total', 0)}")
        return 0

    failures = 0
    for record_id in args.ids:
        try:
            result = retry_dead_letter(session, args.host, secret=args.secret, record_id=record_id)
        except RuntimeError as exc:
            failures += 1
            print(f"{record_id}: {exc}", file=sys.stderr)
            continue
        print(json.dumps({"id": record_id, "messageId": result.get("messageId")}))
    return 1 if failures else 0


if __name__ == "__main__":
    raise SystemExit(main())
