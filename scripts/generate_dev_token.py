#!/usr/bin/env python3
"""
Mint bearer tokens for local development.
Tokens are signed with JWT_SECRET_KEY and shaped like the identity provider's,
so the API and console accept them as verified identities.

Usage:
    python scripts/generate_dev_token.py <external_id> <email> [role]
"""

import sys

from medvisit.config import TOKEN_EXPIRY_HOURS
from medvisit.identity import generate_token


def main(argv):
    if len(argv) < 3:
        print(__doc__)
        return 1

    external_id, email = argv[1], argv[2]
    role = argv[3] if len(argv) > 3 else None

    print("=" * 70)
    print("MedVisit Dev Token")
    print("=" * 70)
    print(f"\n  external_id: {external_id}")
    print(f"  email:       {email}")
    print(f"  role claim:  {role or '(none)'}")
    print(f"  expires in:  {TOKEN_EXPIRY_HOURS}h\n")
    print(generate_token(external_id, email=email, role=role))
    print()
    print("=" * 70)
    print("Note: the role claim only seeds a profile that does not exist yet.")
    print("=" * 70)
    return 0


if __name__ == "__main__":
    sys.exit(main(sys.argv))
