"""
Smoke checks for a running MedVisit API.
Start the server first: python -m medvisit.api.app
Then run this: python scripts/smoke_api.py
"""

import json
import os
import traceback

import requests

from medvisit.identity import generate_token

BASE_URL = os.getenv("SMOKE_BASE_URL", "http://localhost:8000")


def banner(title):
    print("\n" + "=" * 50)
    print(f"CHECK: {title}")
    print("=" * 50)


def show(response):
    print(f"Status Code: {response.status_code}")
    print(f"Response: {json.dumps(response.json(), indent=2)[:1500]}")


def check_health():
    banner("Health Check")
    response = requests.get(f"{BASE_URL}/health")
    show(response)
    return response.status_code == 200


def check_index():
    banner("API Info")
    response = requests.get(f"{BASE_URL}/")
    show(response)
    return response.status_code == 200


def check_without_token():
    banner("Doctors Without Token")
    response = requests.get(f"{BASE_URL}/api/doctors")
    show(response)
    return response.status_code == 401


def check_invalid_token():
    banner("Doctors With Invalid Token")
    response = requests.get(
        f"{BASE_URL}/api/doctors",
        headers={"Authorization": "Bearer not-a-real-token"},
    )
    show(response)
    return response.status_code == 401


def check_me(token):
    banner("Current Profile")
    response = requests.get(f"{BASE_URL}/api/me", headers={"Authorization": f"Bearer {token}"})
    show(response)
    return response.status_code == 200


def check_list(token, kind):
    banner(f"List {kind}")
    response = requests.get(f"{BASE_URL}/api/{kind}", headers={"Authorization": f"Bearer {token}"})
    show(response)
    return response.status_code == 200


def check_visitor_cannot_update_roles(token):
    banner("Visitor Role Update Rejected")
    response = requests.put(
        f"{BASE_URL}/api/users/someone-else/role",
        headers={"Authorization": f"Bearer {token}"},
        json={"role": "admin"},
    )
    show(response)
    return response.status_code == 403


def main():
    print("=" * 50)
    print("MedVisit API Smoke Checks")
    print("=" * 50)
    print(f"Base URL: {BASE_URL}")
    print("Make sure the API server is running with the same JWT_SECRET_KEY!")
    print()

    external_id = input("External id to act as [smoke-visitor]: ").strip() or "smoke-visitor"
    token = generate_token(external_id, email=f"{external_id}@example.com")

    results = {}
    try:
        results["Health Check"] = check_health()
        results["API Info"] = check_index()
        results["Without Token"] = check_without_token()
        results["Invalid Token"] = check_invalid_token()
        results["Current Profile"] = check_me(token)
        for kind in ("doctors", "medications", "medical-centers", "visits"):
            results[f"List {kind}"] = check_list(token, kind)
        results["Visitor Role Update"] = check_visitor_cannot_update_roles(token)
    except Exception as e:
        print(f"\n\nERROR: {e}")
        traceback.print_exc()

    print("\n" + "=" * 50)
    print("SUMMARY")
    print("=" * 50)
    passed = sum(1 for v in results.values() if v)
    for name, result in results.items():
        status = "✓ PASS" if result else "✗ FAIL"
        print(f"{status}: {name}")
    print(f"\nTotal: {passed}/{len(results)} checks passed")
    print("=" * 50)


if __name__ == "__main__":
    main()
