#!/usr/bin/env python3
"""
Generate secrets for bearer-token verification and the identity webhook.
Run this and copy the output to your .env file.
"""

import base64
import secrets

if __name__ == "__main__":
    print("=" * 60)
    print("MedVisit Secret Generator")
    print("=" * 60)
    print("\nGenerating secure random keys...\n")

    print(f"JWT_SECRET_KEY={secrets.token_hex(32)}")
    print(f"WEBHOOK_SECRET=whsec_{base64.b64encode(secrets.token_bytes(24)).decode()}")
    print("\n" + "=" * 60)
    print("Copy the lines above to your .env file")
    print("=" * 60)
