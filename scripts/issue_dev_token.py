#!/usr/bin/env python3
from __future__ import annotations

import argparse
import json
import os
import sys
from datetime import UTC, datetime, timedelta
from pathlib import Path

import jwt

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from jobdesk.domain import DEPARTMENTS, ROLES


def main() -> int:
    parser = argparse.ArgumentParser(description="Issue an HS256 bearer token for local development")
    parser.add_argument("--sub", required=True, help="user id")
    parser.add_argument("--name", default="", help="display name")
    parser.add_argument("--role", default="OFFICER", choices=ROLES)
    parser.add_argument("--department", default="", help="department code")
    parser.add_argument("--minutes", type=int, default=60, help="token lifetime")
    parser.add_argument("--secret", default=os.getenv("JWT_SHARED_SECRET", ""), help="HS256 shared secret")
    parser.add_argument(
        "--register",
        action="store_true",
        help="also upsert the user profile into the configured store",
    )
    args = parser.parse_args()

    secret = str(args.secret or "").strip()
    if not secret:
        raise SystemExit("JWT_SHARED_SECRET is required (pass --secret or set env)")
    department = args.department.strip().upper() or None
    if department is not None and department not in DEPARTMENTS:
        raise SystemExit(f"unknown department: {department}")

    now = datetime.now(UTC)
    claims: dict[str, object] = {
        "sub": args.sub,
        "name": args.name or args.sub,
        "role": args.role,
        "exp": int((now + timedelta(minutes=args.minutes)).timestamp()),
        "iat": int(now.timestamp()),
    }
    if department:
        claims["department"] = department
    if os.getenv("JWT_ISSUER"):
        claims["iss"] = os.environ["JWT_ISSUER"]
    if os.getenv("JWT_AUDIENCE"):
        claims["aud"] = os.environ["JWT_AUDIENCE"]

    if args.register:
        from jobdesk.repositories import UsersRepository
        from jobdesk.store_backends import store

        UsersRepository(store).upsert(
            user_id=args.sub,
            display_name=str(claims["name"]),
            role=args.role,
            department=department,
        )

    token = jwt.encode(claims, secret, algorithm="HS256")
    print(json.dumps({"token": token, "claims": claims}, ensure_ascii=True, sort_keys=True, indent=2))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
