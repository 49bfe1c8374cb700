"""Cloudflare Access setup verification script - MAHORAGA.

Verifies that the worker endpoint is actually protected by checking:
1. An Access Application exists for the worker domain
2. The application has at least one policy attached
3. The One-Time PIN identity provider is enabled

Check 2 catches a partially failed setup run: the application was created but
the policy was not, and re-running setup skips the existing application.

Usage:
    uv run access-verify
    # or
    doppler run -- python -m scripts.verify_access

Exit codes:
    0 - All checks passed
    1 - One or more checks failed
"""

from __future__ import annotations

import argparse
import sys
from dataclasses import dataclass, field

import httpx

from scripts.setup_access import (
    AccessApplication,
    CloudflareAccess,
    CloudflareAPIError,
    MissingConfigurationError,
    dashboard_url,
    extract_domain,
    load_settings,
    report_missing_configuration,
)


@dataclass
class VerificationResult:
    name: str
    passed: bool
    message: str
    details: list[str] = field(default_factory=list)


class AccessVerifier:
    def __init__(self, api: CloudflareAccess, domain: str):
        self.api = api
        self.domain = domain
        self.results: list[VerificationResult] = []
        self._app: AccessApplication | None = None

    def verify_application_exists(self) -> VerificationResult:
        try:
            apps = self.api.list_applications()
        except (CloudflareAPIError, httpx.HTTPError, ValueError) as e:
            return VerificationResult(
                name="Application Exists",
                passed=False,
                message=f"Error listing Access Applications: {e}",
            )

        for app in apps:
            if app.domain == self.domain:
                self._app = app
                return VerificationResult(
                    name="Application Exists",
                    passed=True,
                    message=f"Application found: {app.name} ({self.domain})",
                    details=[
                        f"ID: {app.id}",
                        f"Dashboard: {dashboard_url(self.api.account_id, app.id)}",
                    ],
                )

        return VerificationResult(
            name="Application Exists",
            passed=False,
            message=f"No Access Application protects '{self.domain}'",
            details=[f"Found {len(apps)} applications, none match the worker domain"],
        )

    def verify_policy_attached(self) -> VerificationResult:
        if self._app is None:
            return VerificationResult(
                name="Policy Attached",
                passed=False,
                message="Cannot check policies - application not found",
            )

        try:
            policies = self.api.list_policies(self._app.id)
        except (CloudflareAPIError, httpx.HTTPError, ValueError) as e:
            return VerificationResult(
                name="Policy Attached",
                passed=False,
                message=f"Error listing policies: {e}",
            )

        if not policies:
            return VerificationResult(
                name="Policy Attached",
                passed=False,
                message="Application has no policies - nobody can pass Access",
                details=["Delete the application and re-run setup to recreate both"],
            )

        return VerificationResult(
            name="Policy Attached",
            passed=True,
            message=f"{len(policies)} policy(ies) attached",
            details=[f"{p.name} ({p.decision})" for p in policies],
        )

    def verify_otp_enabled(self) -> VerificationResult:
        try:
            providers = self.api.list_identity_providers()
        except (CloudflareAPIError, httpx.HTTPError, ValueError) as e:
            return VerificationResult(
                name="One-Time PIN",
                passed=False,
                message=f"Error listing identity providers: {e}",
            )

        for provider in providers:
            if provider.get("type") == "onetimepin":
                return VerificationResult(
                    name="One-Time PIN",
                    passed=True,
                    message="One-Time PIN login is enabled",
                    details=[f"ID: {provider.get('id')}"],
                )

        return VerificationResult(
            name="One-Time PIN",
            passed=False,
            message="One-Time PIN identity provider not found",
        )

    def run_all_checks(self) -> list[VerificationResult]:
        self.results = [
            self.verify_application_exists(),
            self.verify_policy_attached(),
            self.verify_otp_enabled(),
        ]
        return self.results


def print_results(results: list[VerificationResult]) -> bool:
    print("\n" + "=" * 60)
    print("CLOUDFLARE ACCESS VERIFICATION RESULTS - MAHORAGA")
    print("=" * 60 + "\n")

    all_passed = True

    for result in results:
        status = "[PASS]" if result.passed else "[FAIL]"

        print(f"{status} | {result.name}")
        print(f"        {result.message}")
        for detail in result.details:
            print(f"        > {detail}")
        print()

        if not result.passed:
            all_passed = False

    print("=" * 60)
    if all_passed:
        print("[OK] ALL CHECKS PASSED")
    else:
        print("[ERROR] SOME CHECKS FAILED")
        print("\nTo fix issues, re-run the setup:")
        print("  uv run access-setup --yes --verbose")
    print("=" * 60)

    return all_passed


def main(argv: list[str] | None = None, *, transport: httpx.BaseTransport | None = None) -> int:
    parser = argparse.ArgumentParser(description="Verify Cloudflare Access for the MAHORAGA worker")
    parser.add_argument(
        "--timeout", type=float, default=30.0, help="Per-request timeout in seconds (default: 30)"
    )
    args = parser.parse_args(argv)

    try:
        settings = load_settings()
        domain = extract_domain(settings.worker_url)
    except MissingConfigurationError as e:
        report_missing_configuration(e)
        return 1
    except ValueError as e:
        print(f"[ERROR] {e}", file=sys.stderr)
        return 1

    print("Verifying Cloudflare Access configuration...")
    print(f"  Account ID: {settings.account_id}")
    print(f"  Domain: {domain}")

    with CloudflareAccess(
        account_id=settings.account_id,
        token=settings.api_token,
        timeout_s=args.timeout,
        transport=transport,
    ) as api:
        results = AccessVerifier(api, domain).run_all_checks()

    return 0 if print_results(results) else 1


if __name__ == "__main__":
    raise SystemExit(main())
