"""Management CLI.

Usage:
    python -m yardbook.cli issue-token <actor_id> <name> <role>   # Access token for local use
    python -m yardbook.cli roles                                  # Show role default permissions
"""

import sys

from yardbook.auth.jwt import create_access_token
from yardbook.auth.permissions import ROLE_DEFAULTS, resolve_permissions


def issue_token(actor_id: str, name: str, role: str) -> str:
    """Sign an access token carrying the role's default permissions."""
    if role not in ROLE_DEFAULTS:
        raise ValueError(f"Unknown role '{role}'")
    return create_access_token(actor_id, name, role, resolve_permissions(role))


def list_roles():
    for role in ROLE_DEFAULTS:
        print(f"  {role}: {', '.join(resolve_permissions(role)) or '-'}")


def main(argv: list[str]) -> int:
    cmd = argv[0] if argv else ""
    if cmd == "issue-token" and len(argv) == 4:
        try:
            print(issue_token(*argv[1:]))
        except ValueError as exc:
            print(f"  FAILED: {exc}")
            return 1
    elif cmd == "roles":
        list_roles()
    else:
        print("Usage: python -m yardbook.cli [issue-token <actor_id> <name> <role> | roles]")
        return 2
    return 0


if __name__ == "__main__":
    sys.exit(main(sys.argv[1:]))
