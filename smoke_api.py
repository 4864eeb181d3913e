#!/usr/bin/env python3
"""
Smoke test for a running hospital backend.

Logs in as each demo role (see ``manage.py ensure_test_users``), calls
the endpoints that role works with and prints a summary.  Exits with 1
if any call answered with an unexpected status.

    python manage.py runserver &
    python smoke_api.py --base-url http://127.0.0.1:8000
"""
import argparse
import sys
import time
from dataclasses import dataclass
from typing import Optional

import requests

DEFAULT_PASSWORD = "P@ssw0rd1"

ROLE_USERS = {
    "admin": "admin1",
    "doctor": "doctor1",
    "nurse": "nurse1",
    "pharmacist": "pharmacist1",
    "receptionist": "reception1",
    "cashier": "cashier1",
}

# (method, path, expected status, description)
COMMON_CASES = [
    ("GET", "/api/auth/me", 200, "current user"),
    ("GET", "/api/dashboard", 200, "dashboard"),
    ("GET", "/api/departments", 200, "departments"),
    ("GET", "/api/wards", 200, "wards"),
    ("GET", "/api/wards/occupancy", 200, "occupancy matrix"),
    ("GET", "/api/tests", 200, "test catalogue"),
    ("GET", "/api/drugs", 200, "drug formulary"),
    ("GET", "/api/services", 200, "service catalogue"),
    ("GET", "/api/patients", 200, "patients"),
    ("GET", "/api/opd/queue", 200, "OPD queue"),
]

ROLE_CASES = {
    "admin": [
        ("GET", "/api/master-data/audit", 200, "master data audit"),
        ("GET", "/api/invoices", 200, "invoices"),
    ],
    "doctor": [
        ("GET", "/api/ipd/admissions", 200, "active admissions"),
        ("GET", "/api/lab-orders/worklist", 200, "lab worklist"),
        ("GET", "/api/invoices", 403, "invoices are cashier only"),
    ],
    "nurse": [
        ("GET", "/api/ipd/census", 200, "IPD census"),
        ("GET", "/api/reports/census", 200, "census export"),
    ],
    "pharmacist": [
        ("GET", "/api/drugs/low-stock", 200, "low stock"),
        ("GET", "/api/prescriptions/pending", 200, "pending prescriptions"),
    ],
    "receptionist": [
        ("POST", "/api/departments", 403, "master data is admin only"),
    ],
    "cashier": [
        ("GET", "/api/invoices", 200, "invoices"),
        ("GET", "/api/reports/revenue", 200, "revenue export"),
    ],
}


@dataclass
class CallResult:
    role: str
    method: str
    path: str
    status_code: int
    expected: int
    elapsed: float
    description: str = ""
    error: str = ""

    @property
    def ok(self) -> bool:
        return self.status_code == self.expected


class SmokeTester:
    def __init__(self, base_url: str, password: str):
        self.base_url = base_url.rstrip("/")
        self.password = password
        self.session = requests.Session()
        self.headers: dict = {}
        self.role: Optional[str] = None
        self.results: list[CallResult] = []

    def login(self, role: str) -> bool:
        username = ROLE_USERS[role]
        start = time.time()
        try:
            resp = self.session.post(f"{self.base_url}/api/auth/login",
                                     json={"username": username, "password": self.password}, timeout=10)
        except requests.RequestException as e:
            self.results.append(CallResult(role, "POST", "/api/auth/login", 0, 200, 0, "login", str(e)))
            print(f"[FAIL] {username} login: {e}")
            return False
        result = CallResult(role, "POST", "/api/auth/login", resp.status_code, 200, time.time() - start,
                            f"{username} login", "" if resp.ok else resp.text[:200])
        self.results.append(result)
        if not result.ok:
            print(f"[FAIL] {username} login: {resp.status_code}")
            return False
        self.headers = {"Authorization": f"Token {resp.json()['token']}"}
        self.role = role
        print(f"[ OK ] {username} logged in ({result.elapsed:.2f}s)")
        return True

    def call(self, method: str, path: str, expected: int, description: str = "") -> CallResult:
        start = time.time()
        try:
            resp = self.session.request(method, f"{self.base_url}{path}", headers=self.headers,
                                        json={} if method in ("POST", "PATCH") else None, timeout=10)
            status, error = resp.status_code, ""
            if status != expected:
                error = resp.text[:200]
        except requests.RequestException as e:
            status, error = 0, str(e)
        result = CallResult(self.role or "", method, path, status, expected, time.time() - start, description, error)
        self.results.append(result)
        mark = " OK " if result.ok else "FAIL"
        print(f"[{mark}] {method} {path} -> {status} (expected {expected}, {result.elapsed:.2f}s)")
        return result

    def run(self, roles) -> bool:
        health = self.session.get(f"{self.base_url}/healthz", timeout=10)
        print(f"healthz: {health.status_code} {health.text}")
        for role in roles:
            print(f"\n== {role} ==")
            if not self.login(role):
                continue
            for method, path, expected, description in COMMON_CASES + ROLE_CASES.get(role, []):
                self.call(method, path, expected, description)
            self.session.post(f"{self.base_url}/api/auth/logout", headers=self.headers, timeout=10)
        return self.report()

    def report(self) -> bool:
        failed = [r for r in self.results if not r.ok]
        total = len(self.results)
        print(f"\n{total - len(failed)}/{total} calls answered as expected")
        for r in failed:
            print(f"  {r.role:<12} {r.method:<6} {r.path:<40} {r.status_code} != {r.expected} {r.error[:80]}")
        if self.results:
            slowest = max(self.results, key=lambda r: r.elapsed)
            print(f"slowest: {slowest.method} {slowest.path} {slowest.elapsed:.2f}s")
        return not failed


def main():
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[1])
    parser.add_argument("--base-url", default="http://127.0.0.1:8000")
    parser.add_argument("--password", default=DEFAULT_PASSWORD)
    parser.add_argument("--role", action="append", choices=sorted(ROLE_USERS), help="limit to these roles")
    args = parser.parse_args()

    tester = SmokeTester(args.base_url, args.password)
    sys.exit(0 if tester.run(args.role or list(ROLE_USERS)) else 1)


if __name__ == "__main__":
    main()
