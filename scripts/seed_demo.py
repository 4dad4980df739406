from __future__ import annotations

import argparse
import asyncio
from dataclasses import dataclass
import sys

from opsportal.core.errors import ConflictError
from opsportal.persistence.store import DirectoryStore
from opsportal.services.entitlements import EntitlementManager
from opsportal.services.status_workflow import StatusDefinition, StatusWorkflowEngine
from opsportal.services.teams import TeamDirectory
from opsportal.services.tenant_policy import TENANT_FARM, TENANT_PPE


@dataclass(frozen=True)
class DemoTeam:
    slug: str
    name: str
    tenant_type: str
    locations: tuple[str, ...]
    features: tuple[str, ...]


DEMO_TEAMS = (
    DemoTeam(
        slug="acme-safety",
        name="Acme Safety",
        tenant_type=TENANT_PPE,
        locations=("North Plant", "South Warehouse"),
        features=("dashboard", "live-monitoring", "analytics", "alerts"),
    ),
    DemoTeam(
        slug="green-pastures",
        name="Green Pastures",
        tenant_type=TENANT_FARM,
        locations=("Home Farm",),
        features=("dashboard", "records", "alerts"),
    ),
)

DEMO_STATUSES = (
    StatusDefinition(name="Open", code="open", color="#d32f2f", is_default=True),
    StatusDefinition(name="In Review", code="in review", color="#f9a825"),
    StatusDefinition(name="Resolved", code="resolved", color="#388e3c"),
)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Seed demo teams, licenses and statuses")
    parser.add_argument("--owner-email", default="owner@example.com", help="Owner user email")
    parser.add_argument(
        "--create-schema",
        action="store_true",
        help="Create tables from the ORM metadata first (local SQLite only)",
    )
    return parser


async def _seed(args: argparse.Namespace) -> int:
    store = DirectoryStore()
    try:
        if args.create_schema:
            await store.create_schema()
        directory = TeamDirectory(store)
        entitlements = EntitlementManager(store)
        workflow = StatusWorkflowEngine(store)

        try:
            owner = await directory.create_user(args.owner_email, "Demo Owner")
        except ConflictError:
            print(f"skipping seed: {args.owner_email} already exists")
            return 0
        for demo in DEMO_TEAMS:
            try:
                team = await directory.create_team(demo.slug, demo.name, demo.tenant_type)
            except ConflictError:
                print(f"skipping {demo.slug}: already seeded")
                continue
            await directory.add_member(team.id, owner.id, "OWNER")
            for location_name in demo.locations:
                await directory.add_location(team.id, location_name)
            license = await entitlements.create_license(
                team.id,
                name=f"{demo.name} Standard",
                renewal_period="ANNUALLY",
                price="1200.00",
                max_users=5,
                max_locations=len(demo.locations),
                features=demo.features,
            )
            [purchased] = await entitlements.purchase(team.id, [license.id])
            await entitlements.assign_to_user(purchased.id, owner.id)
            await workflow.define_defaults(team.id, DEMO_STATUSES)
            print(f"seeded team={demo.slug} purchased_license={purchased.id}")
    finally:
        await store.dispose()
    return 0


def main() -> int:
    args = _build_parser().parse_args()
    try:
        return asyncio.run(_seed(args))
    except Exception as exc:  # noqa: BLE001 - surface seeding failures clearly
        print(f"seed_demo failed: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
