#!/usr/bin/env python3
"""Emit deterministic SQL that grants or revokes directory moderation rights."""

from __future__ import annotations

import argparse


def _quote_sql(value: str) -> str:
    escaped = value.replace("'", "''")
    return f"'{escaped}'"


def render_sql(*, emails: list[str], revoke: bool = False) -> str:
    normalized = sorted({email.strip().lower() for email in emails if email and email.strip()})
    if not normalized:
        raise ValueError("at least one email is required")

    values = ", ".join(_quote_sql(email) for email in normalized)
    if revoke:
        statement = f"delete from admin_emails where email in ({values});"
    else:
        rows = ",\n  ".join(f"({_quote_sql(email)})" for email in normalized)
        statement = f"insert into admin_emails (email)\nvalues\n  {rows}\non conflict (email) do nothing;"

    return f"""-- Resource directory admin allow-list
-- Run this in the Supabase SQL editor (or equivalent privileged Postgres session).

{statement}
"""


def main() -> None:
    parser = argparse.ArgumentParser(description="Emit SQL to manage the moderation admin allow-list.")
    parser.add_argument("emails", nargs="+", help="Account email(s) to allow-list")
    parser.add_argument("--revoke", action="store_true", help="Remove the emails instead of adding them")
    args = parser.parse_args()

    print(render_sql(emails=args.emails, revoke=args.revoke))


if __name__ == "__main__":
    main()
