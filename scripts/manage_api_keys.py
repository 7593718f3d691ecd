#!/usr/bin/env python3
"""
CLI for API Key Management.

Provides commands to generate, list, revoke, rotate and verify API keys, and
to show the tier table. Uses the same service layer as the management API.
"""

import argparse
import asyncio
import sys
from typing import List, Optional

from src.auth.api_key import check_api_key, extract_key_prefix, mask_api_key
from src.auth.tiers import TIERS, UNLIMITED, Tier
from src.config import settings
from src.exceptions import GatekeeperError, InvalidCredentialError
from src.models.api_key import ApiKey
from src.schemas.api_key import IssuedKey
from src.services.api_key_service import ApiKeyService


def _fmt_limit(value: int) -> str:
    return "unlimited" if value == UNLIMITED else str(value)


def print_issued(issued: IssuedKey) -> None:
    """Print a freshly issued credential. The only place it is ever shown."""
    print(f"\nKey ID: {issued.key_id}")
    print(f"API Key: {issued.api_key}")
    print(f"Prefix: {issued.key_prefix}")
    print(f"Tier: {issued.tier.value}")
    print(f"\n⚠️  IMPORTANT: {issued.warning}")


def print_key_table(keys: List[ApiKey]) -> None:
    """Print an owner's keys, one per row."""
    print(
        f"\n{'Key ID':<38} {'Prefix':<21} {'Tier':<11} {'Active':<7}"
        f" {'Used/Day':<18} {'Name':<30}"
    )
    print("-" * 129)

    for api_key in keys:
        name = api_key.name
        if len(name) > 27:
            name = name[:27] + "..."
        usage = f"{api_key.requests_used_today}/{_fmt_limit(api_key.requests_per_day)}"
        print(
            f"{api_key.key_id:<38} {mask_api_key(api_key.key_prefix):<21} {api_key.tier.value:<11}"
            f" {'yes' if api_key.is_active else 'no':<7} {usage:<18} {name:<30}"
        )

    print(f"\nTotal: {len(keys)} API keys")


async def cmd_generate(
    service: ApiKeyService,
    owner_id: str,
    name: str,
    tier: str,
    expires_in_days: Optional[int],
    allowed_ips: Optional[List[str]],
    allowed_endpoints: Optional[List[str]],
    environment: Optional[str],
) -> None:
    """Generate a new API key and print it once."""
    issued = await service.generate(
        owner_id=owner_id,
        name=name,
        tier=Tier(tier),
        expires_in_days=expires_in_days,
        allowed_ips=allowed_ips,
        allowed_endpoints=allowed_endpoints,
        environment=environment,
    )
    print("✓ API Key created successfully")
    print_issued(issued)


async def cmd_list(service: ApiKeyService, owner_id: str) -> None:
    """List an owner's API keys."""
    keys = await service.list_keys(owner_id)
    if not keys:
        print("No API keys found.")
        return
    print_key_table(keys)


async def cmd_revoke(service: ApiKeyService, owner_id: str, key_id: str) -> None:
    """Revoke an API key."""
    await service.revoke(owner_id, key_id)
    print(f"✓ API key {key_id} has been revoked")


async def cmd_rotate(service: ApiKeyService, owner_id: str, key_id: str) -> None:
    """Rotate an API key and print the replacement once."""
    issued = await service.rotate(owner_id, key_id)
    print(f"✓ API key {key_id} rotated")
    print_issued(issued)


async def cmd_verify(service: ApiKeyService, credential: str) -> None:
    """
    Check a presented credential against the store.

    Does not count against the key's quota.
    """
    key_prefix = extract_key_prefix(credential)
    api_key = await service.repository.get_by_prefix(key_prefix)
    if api_key is None:
        raise InvalidCredentialError()
    await asyncio.to_thread(check_api_key, credential, api_key.key_hash)

    print(f"✓ {mask_api_key(api_key.key_prefix)} matches key {api_key.key_id}")
    print(f"Owner: {api_key.owner_id}")
    print(f"Tier: {api_key.tier.value}")
    print(f"Active: {'yes' if api_key.is_active else 'no'}")
    if api_key.expires_at:
        print(f"Expires: {api_key.expires_at.isoformat()}")


def cmd_tiers() -> None:
    """Print the tier table."""
    print(f"\n{'Tier':<12} {'Per Day':<11} {'Per Minute':<11} Endpoints")
    print("-" * 80)
    for tier, descriptor in TIERS.items():
        print(
            f"{tier.value:<12} {_fmt_limit(descriptor.requests_per_day):<11}"
            f" {descriptor.requests_per_minute:<11}"
            f" {', '.join(descriptor.allowed_endpoints)}"
        )


def build_parser() -> argparse.ArgumentParser:
    """Argument parser for all subcommands."""
    parser = argparse.ArgumentParser(
        description=f"Manage API keys for {settings.api_title}",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    subparsers = parser.add_subparsers(dest="command", help="Command")

    generate_parser = subparsers.add_parser("generate", help="Generate a new API key")
    generate_parser.add_argument("--owner", required=True, help="Owning account ID")
    generate_parser.add_argument("--name", required=True, help="Human-readable key name")
    generate_parser.add_argument(
        "--tier",
        choices=[tier.value for tier in Tier],
        default=Tier.FREE.value,
        help="Subscription tier (default: free)",
    )
    generate_parser.add_argument(
        "--expires-in-days", type=int, help="Days until the key expires"
    )
    generate_parser.add_argument(
        "--allowed-ips", nargs="+", help="IP addresses or CIDR blocks (space-separated)"
    )
    generate_parser.add_argument(
        "--allowed-endpoints",
        nargs="+",
        help="Restrict the key below its tier (space-separated paths or patterns)",
    )
    generate_parser.add_argument(
        "--environment",
        choices=["live", "test"],
        help=f"Key environment (default: {settings.api_key_environment})",
    )

    list_parser = subparsers.add_parser("list", help="List an owner's API keys")
    list_parser.add_argument("--owner", required=True, help="Owning account ID")

    revoke_parser = subparsers.add_parser("revoke", help="Revoke an API key")
    revoke_parser.add_argument("--owner", required=True, help="Owning account ID")
    revoke_parser.add_argument("key_id", type=str, help="Key ID to revoke")

    rotate_parser = subparsers.add_parser("rotate", help="Rotate an API key")
    rotate_parser.add_argument("--owner", required=True, help="Owning account ID")
    rotate_parser.add_argument("key_id", type=str, help="Key ID to rotate")

    verify_parser = subparsers.add_parser(
        "verify", help="Check which key a credential belongs to"
    )
    verify_parser.add_argument("credential", help="Full API key")

    subparsers.add_parser("tiers", help="Show the tier table")

    return parser


async def run(args: argparse.Namespace, service: Optional[ApiKeyService] = None) -> None:
    """Dispatch a parsed command."""
    if args.command == "tiers":
        cmd_tiers()
        return

    service = service or ApiKeyService()
    if args.command == "generate":
        await cmd_generate(
            service,
            args.owner,
            args.name,
            args.tier,
            args.expires_in_days,
            args.allowed_ips,
            args.allowed_endpoints,
            args.environment,
        )
    elif args.command == "list":
        await cmd_list(service, args.owner)
    elif args.command == "revoke":
        await cmd_revoke(service, args.owner, args.key_id)
    elif args.command == "rotate":
        await cmd_rotate(service, args.owner, args.key_id)
    elif args.command == "verify":
        await cmd_verify(service, args.credential)


def main(argv: Optional[List[str]] = None) -> None:
    """Main entry point for the CLI."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        sys.exit(1)

    try:
        asyncio.run(run(args))
    except GatekeeperError as exc:
        print(f"✗ Error: {exc.message}")
        sys.exit(1)


if __name__ == "__main__":
    main()
