from __future__ import annotations

import argparse
import asyncio
import json
import os
from pathlib import Path
from typing import Any

import httpx

from route_access.infra.auth import create_access_token


def assert_status(response: httpx.Response, expected: int | tuple[int, ...]) -> None:
    expected_codes = (expected,) if isinstance(expected, int) else expected
    if response.status_code not in expected_codes:
        raise RuntimeError(
            f"{response.request.method} {response.request.url} expected {expected_codes}, "
            f"got {response.status_code}: {response.text}"
        )


def auth_headers(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


def load_route_catalog(path: Path) -> list[dict[str, Any]]:
    raw = json.loads(path.read_text(encoding="utf-8"))
    pages = raw.get("pages") if isinstance(raw, dict) else raw
    if not isinstance(pages, list) or not pages:
        raise RuntimeError(f"{path} must hold a non-empty list of pages")
    return pages


def _resolve_token() -> str:
    token = os.getenv("ACCESS_TOKEN")
    if token:
        return token
    # Minted locally; only works when JWT_SECRET matches the target service.
    return create_access_token(
        user_id=int(os.getenv("SYNC_USER_ID", "1")),
    )


async def _run(catalog_path: Path, action_keys: list[str]) -> None:
    base_url = os.getenv("APP_BASE_URL", "http://localhost:8000")
    token = _resolve_token()
    pages = load_route_catalog(catalog_path)

    async with httpx.AsyncClient(base_url=base_url, timeout=httpx.Timeout(20.0)) as client:
        sync_resp = await client.post(
            "/api/settings/pages:sync",
            json={"pages": pages},
            headers=auth_headers(token),
        )
        assert_status(sync_resp, 200)
        summary = sync_resp.json()
        print(
            "sync_routes: "
            f"inserted={summary['inserted_count']} "
            f"updated={summary['updated_count']} "
            f"skipped={summary['skipped_count']}"
        )
        for item in summary["results"]:
            if item["status"] == "skipped":
                print(f"  skipped {item.get('page_key')} {item.get('route_path')}: {item.get('reason')}")

        if action_keys:
            generate_resp = await client.post(
                "/api/settings/permissions:generate",
                json={"action_keys": action_keys},
                headers=auth_headers(token),
            )
            assert_status(generate_resp, 200)
            generated = generate_resp.json()
            print(
                "sync_routes: "
                f"generated={generated['generated_count']} "
                f"skipped={generated['skipped_count']}"
            )


def main() -> None:
    parser = argparse.ArgumentParser(description="Push a route catalog into the page registry.")
    parser.add_argument("catalog", type=Path, help="JSON file with a list of pages or {\"pages\": [...]}")
    parser.add_argument(
        "--generate",
        action="append",
        default=[],
        metavar="ACTION",
        help="also generate permissions for this action key (repeatable)",
    )
    args = parser.parse_args()
    asyncio.run(_run(args.catalog, args.generate))


if __name__ == "__main__":
    main()
