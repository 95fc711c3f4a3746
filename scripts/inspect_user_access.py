"""Utility to inspect what a user can see in the portal.

Run with:

    python -m scripts.inspect_user_access --user-id <uuid> [--kpis] [--project <id>|all]

Requires SUPABASE_URL/SUPABASE_SERVICE_ROLE_KEY environment variables. The
service role bypasses row-level security, so results show what the portal's
own rules allow rather than what the database policies would return.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from typing import Any, Dict


def dump(obj: Dict[str, Any]) -> str:
    return json.dumps(obj, indent=2, sort_keys=True, default=str)


async def inspect_access(user_id: str, *, project: str, kpis: bool) -> int:
    # Lazy imports so the .env file is loaded before CONFIG is read.
    from portal.config import CONFIG
    from portal.core.executions import ExecutionAggregator
    from portal.core.portal_session import reconcile_selection
    from portal.core.preferences import get_view_mode_store
    from portal.core.role_resolver import RoleResolver
    from portal.db import get_database_client
    from portal.db.models import DateRange

    db = await get_database_client()
    resolver = RoleResolver(db, get_view_mode_store())
    state = await resolver.resolve(user_id)
    if not state.has_access:
        print("No profile found; user has zero access", file=sys.stderr)
        return 1

    print("Role state:\n" + dump(state.to_dict()))

    projects = await resolver.get_accessible_projects()
    print("\nAccessible projects:\n" + dump({"projects": [p.to_dict() for p in projects]}))

    selection = reconcile_selection(state, projects, project)
    print(f"\nEffective selection: {selection}")

    if kpis:
        date_range = DateRange.last_days(CONFIG.default_date_range_days)
        result = await ExecutionAggregator(db).fetch_executions(state, selection, date_range)
        print("\nTables queried: " + ", ".join(result.tables or ["(none)"]))
        for failure in result.failures:
            print(f"  failed: {failure.table}: {failure.error}", file=sys.stderr)
        print("\nKPIs:\n" + dump(result.kpis.to_dict()))

    return 0


def main() -> int:
    from portal.config import PROJECT_ROOT, load_envs

    load_envs(str(PROJECT_ROOT))

    parser = argparse.ArgumentParser(description="Inspect a user's portal role and project access")
    parser.add_argument("--user-id", required=True, help="Auth user UUID")
    parser.add_argument("--project", default="all", help="Requested project id or 'all'")
    parser.add_argument("--kpis", action="store_true", help="Also aggregate executions for the selection")
    args = parser.parse_args()

    return asyncio.run(inspect_access(args.user_id, project=args.project, kpis=args.kpis))


if __name__ == "__main__":
    raise SystemExit(main())
