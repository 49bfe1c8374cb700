"""Cloudflare Access bootstrap automation (idempotent) - MAHORAGA.

This script protects the MAHORAGA worker endpoint with Cloudflare Access:
- One-Time PIN identity provider (account-level, created once)
- Access Application for the worker domain (self-hosted, 24h session)
- Access Policy allowing either an email allowlist or everyone via OTP

Required environment variables:
- CLOUDFLARE_API_TOKEN           API token with Access: Edit permissions
- CLOUDFLARE_ACCOUNT_ID
- MAHORAGA_WORKER_URL            e.g. https://mahoraga.your-subdomain.workers.dev

Optional environment variables:
- MAHORAGA_ALLOWED_EMAILS        comma-separated allowlist (empty: OTP for everyone)
- MAHORAGA_ACCESS_APP_NAME       default: MAHORAGA Trading Agent

Usage:
    uv run access-setup --yes --verbose

Notes:
- This script avoids printing secrets.
- It is designed to be safe to re-run (idempotent). An existing application
  for the worker domain is left untouched, including its policies.
- Run `uv run access-verify` afterwards to confirm a policy is attached.
"""

from __future__ import annotations

import argparse
import os
import posixpath
import sys
from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any
from urllib.parse import quote, urlsplit

import httpx


API_BASE = "https://api.cloudflare.com/client/v4"
DASHBOARD_BASE = "https://one.dash.cloudflare.com"

DEFAULT_APP_NAME = "MAHORAGA Trading Agent"
ALLOWLIST_POLICY_NAME = "Allowed Users"
OTP_POLICY_NAME = "OTP Verification"


# =============================================================================
# CONFIGURATION
# =============================================================================


REQUIRED_ENV_HINTS: dict[str, list[str]] = {
    "CLOUDFLARE_API_TOKEN": [
        "Create one at: https://dash.cloudflare.com/profile/api-tokens",
        "Required permissions: Account -> Access: Organizations, Identity Providers, "
        "and Groups -> Edit",
    ],
    "CLOUDFLARE_ACCOUNT_ID": [
        "Find it at: https://dash.cloudflare.com -> Account ID in the sidebar",
    ],
    "MAHORAGA_WORKER_URL": [
        "Example: https://mahoraga.your-subdomain.workers.dev",
    ],
}


class MissingConfigurationError(Exception):
    """One or more required environment variables are unset or blank."""

    def __init__(self, missing: list[str]):
        self.missing = missing
        super().__init__(f"Missing required env var(s): {', '.join(missing)}")


@dataclass(frozen=True)
class Settings:
    api_token: str
    account_id: str
    worker_url: str
    allowed_emails: list[str] = field(default_factory=list)
    app_name: str = DEFAULT_APP_NAME


def parse_allowed_emails(value: str | None) -> list[str]:
    if not value:
        return []
    return [v.strip() for v in value.split(",") if v.strip()]


def load_settings(environ: Mapping[str, str] | None = None) -> Settings:
    env = os.environ if environ is None else environ

    values = {name: (env.get(name) or "").strip() for name in REQUIRED_ENV_HINTS}
    missing = [name for name, value in values.items() if not value]
    if missing:
        raise MissingConfigurationError(missing)

    return Settings(
        api_token=values["CLOUDFLARE_API_TOKEN"],
        account_id=values["CLOUDFLARE_ACCOUNT_ID"],
        worker_url=values["MAHORAGA_WORKER_URL"],
        allowed_emails=parse_allowed_emails(env.get("MAHORAGA_ALLOWED_EMAILS")),
        app_name=(env.get("MAHORAGA_ACCESS_APP_NAME") or "").strip() or DEFAULT_APP_NAME,
    )


def report_missing_configuration(error: MissingConfigurationError) -> None:
    for name in error.missing:
        print(f"[ERROR] {name} is required", file=sys.stderr)
        for hint in REQUIRED_ENV_HINTS.get(name, []):
            print(f"        {hint}", file=sys.stderr)


def _normalize_path(path: str) -> str:
    """Resolve dot segments and percent-encode the path as a browser URL parser does."""
    if not path:
        return ""
    trailing_slash = path.endswith(("/", "/.", "/.."))
    path = posixpath.normpath(path)
    if trailing_slash and not path.endswith("/"):
        path += "/"
    if path == "/":
        return ""
    return quote(path, safe="/%:@!$&'()*+,;=")


def extract_domain(url: str) -> str:
    """Return the Access domain for a worker URL: hostname plus any non-root path."""
    parsed = urlsplit(url)
    if not parsed.hostname:
        raise ValueError(f"Invalid worker URL (no hostname): {url!r}")
    return parsed.hostname + _normalize_path(parsed.path)


def dashboard_url(account_id: str, app_id: str) -> str:
    return f"{DASHBOARD_BASE}/{account_id}/access/apps/{app_id}"


# =============================================================================
# CLOUDFLARE API
# =============================================================================


class CloudflareAPIError(RuntimeError):
    """A Cloudflare v4 envelope came back with success=false."""

    def __init__(self, errors: list[dict[str, Any]]):
        self.errors = errors
        super().__init__(", ".join(str(e.get("message", "")) for e in errors))


@dataclass(frozen=True)
class Envelope:
    success: bool
    errors: list[dict[str, Any]]
    result: Any

    @classmethod
    def from_json(cls, data: Any) -> Envelope:
        if not isinstance(data, dict) or "success" not in data:
            raise ValueError(f"Unexpected Cloudflare response: {data!r}")
        return cls(
            success=bool(data["success"]),
            errors=list(data.get("errors") or []),
            result=data.get("result"),
        )

    def unwrap(self) -> Any:
        if not self.success:
            raise CloudflareAPIError(self.errors)
        return self.result


@dataclass(frozen=True)
class AccessApplication:
    id: str
    name: str
    domain: str
    type: str = ""
    session_duration: str = ""

    @classmethod
    def from_api(cls, data: dict) -> AccessApplication:
        if not isinstance(data, dict):
            raise ValueError(f"Unexpected Cloudflare application payload: {data!r}")
        return cls(
            id=data.get("id", ""),
            name=data.get("name", ""),
            domain=data.get("domain", ""),
            type=data.get("type", ""),
            session_duration=data.get("session_duration", ""),
        )


@dataclass(frozen=True)
class AccessPolicy:
    id: str
    name: str
    decision: str
    include: list[dict] = field(default_factory=list)

    @classmethod
    def from_api(cls, data: dict) -> AccessPolicy:
        if not isinstance(data, dict):
            raise ValueError(f"Unexpected Cloudflare policy payload: {data!r}")
        return cls(
            id=data.get("id", ""),
            name=data.get("name", ""),
            decision=data.get("decision", ""),
            include=list(data.get("include") or []),
        )


def policy_include(emails: list[str]) -> list[dict]:
    if emails:
        return [{"email": {"email": email}} for email in emails]
    return [{"everyone": {}}]


class CloudflareAccess:
    def __init__(
        self,
        *,
        account_id: str,
        token: str,
        base_url: str = API_BASE,
        timeout_s: float = 30.0,
        verbose: bool = False,
        transport: httpx.BaseTransport | None = None,
    ):
        self.account_id = account_id
        self._verbose = verbose
        self._client = httpx.Client(
            base_url=base_url,
            headers={
                "Authorization": f"Bearer {token}",
                "Content-Type": "application/json",
            },
            timeout=timeout_s,
            transport=transport,
        )

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> CloudflareAccess:
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def _request(
        self,
        method: str,
        path: str,
        *,
        json: dict | None = None,
        headers: dict[str, str] | None = None,
    ) -> Any:
        """Make a Cloudflare API request and return the envelope's result."""
        if self._verbose:
            print(f"  {method} {path}")
        # Cloudflare reports failures in the envelope, so the status code is not checked.
        resp = self._client.request(method, path, json=json, headers=headers)
        return Envelope.from_json(resp.json()).unwrap()

    def _account_path(self, suffix: str) -> str:
        return f"/accounts/{self.account_id}/access/{suffix}"

    def list_applications(self) -> list[AccessApplication]:
        apps = self._request("GET", self._account_path("apps"))
        return [AccessApplication.from_api(a) for a in apps or []]

    def create_application(self, *, name: str, domain: str) -> AccessApplication:
        created = self._request(
            "POST",
            self._account_path("apps"),
            json={
                "name": name,
                "domain": domain,
                "type": "self_hosted",
                "session_duration": "24h",
                "auto_redirect_to_identity": True,
                "http_only_cookie_attribute": True,
                "same_site_cookie_attribute": "lax",
            },
        )
        return AccessApplication.from_api(created)

    def list_policies(self, app_id: str) -> list[AccessPolicy]:
        policies = self._request("GET", self._account_path(f"apps/{app_id}/policies"))
        return [AccessPolicy.from_api(p) for p in policies or []]

    def create_policy(self, *, app_id: str, name: str, emails: list[str]) -> AccessPolicy:
        created = self._request(
            "POST",
            self._account_path(f"apps/{app_id}/policies"),
            json={
                "name": name,
                "decision": "allow",
                "include": policy_include(emails),
                "require": [],
                "exclude": [],
                "precedence": 1,
            },
        )
        return AccessPolicy.from_api(created)

    def list_identity_providers(self) -> list[dict]:
        providers = self._request("GET", self._account_path("identity_providers"))
        return providers if isinstance(providers, list) else []

    def create_otp_identity_provider(self) -> dict:
        return self._request(
            "POST",
            self._account_path("identity_providers"),
            json={"name": "One-Time PIN", "type": "onetimepin", "config": {}},
        )


# =============================================================================
# PROVISIONING
# =============================================================================


class AccessState(str, Enum):
    ABSENT = "absent"
    PROVISIONING = "provisioning"
    PRESENT = "present"


@dataclass
class ProvisionResult:
    state: AccessState
    domain: str
    application: AccessApplication | None = None
    policy: AccessPolicy | None = None
    created: bool = False


def is_already_exists(error: CloudflareAPIError) -> bool:
    """Whether an identity provider create failed only because it already exists.

    Cloudflare does not document a stable error code for this case, so the
    check matches the message text. Keep every use of that heuristic here.
    """
    return "already exists" in str(error).lower()


def enable_otp_login(api: CloudflareAccess) -> bool:
    """Enable One-Time PIN login. Returns False when it was already enabled."""
    try:
        api.create_otp_identity_provider()
    except CloudflareAPIError as e:
        if not is_already_exists(e):
            raise
        print("[OK] One-Time PIN login already enabled")
        return False
    print("[OK] One-Time PIN login enabled")
    return True


def ensure_access(
    api: CloudflareAccess,
    *,
    domain: str,
    app_name: str,
    emails: list[str],
    dry_run: bool = False,
) -> ProvisionResult:
    existing = next((app for app in api.list_applications() if app.domain == domain), None)
    if existing:
        print(f"[OK] Access Application already exists: {existing.name} ({existing.id})")
        print(f"     Dashboard: {dashboard_url(api.account_id, existing.id)}")
        return ProvisionResult(state=AccessState.PRESENT, domain=domain, application=existing)

    policy_name = ALLOWLIST_POLICY_NAME if emails else OTP_POLICY_NAME

    if dry_run:
        print("[DRY-RUN] Would enable One-Time PIN login")
        print(f"[DRY-RUN] Would create Access Application: {app_name} ({domain})")
        print(f"[DRY-RUN] Would create Access Policy: {policy_name}")
        return ProvisionResult(state=AccessState.ABSENT, domain=domain)

    result = ProvisionResult(state=AccessState.PROVISIONING, domain=domain)

    print("[..] Creating Access Application...")
    enable_otp_login(api)

    result.application = api.create_application(name=app_name, domain=domain)
    print(f"[OK] Created Access Application: {result.application.name} ({result.application.id})")

    print("[..] Creating Access Policy...")
    result.policy = api.create_policy(
        app_id=result.application.id, name=policy_name, emails=emails
    )
    print(f"[OK] Created Access Policy: {result.policy.name} ({result.policy.id})")

    result.state = AccessState.PRESENT
    result.created = True
    return result


# =============================================================================
# REPORTING
# =============================================================================


def print_header(settings: Settings, domain: str) -> None:
    print("\nMAHORAGA Cloudflare Access Setup\n")
    print(f"Account ID: {settings.account_id}")
    print(f"Worker URL: {settings.worker_url}")
    print(f"Domain: {domain}")
    if settings.allowed_emails:
        print(f"Allowed Emails: {', '.join(settings.allowed_emails)}\n")
    else:
        print("Allowed Emails: (all - using OTP)\n")


def print_summary(settings: Settings, result: ProvisionResult) -> None:
    if not result.created or result.application is None:
        return

    print("\n" + "=" * 60)
    print("[OK] Cloudflare Access Setup Complete!\n")
    print("Your MAHORAGA endpoints are now protected.")
    print(f"Dashboard: {dashboard_url(settings.account_id, result.application.id)}")

    if settings.allowed_emails:
        print(f"\nAuthentication: Email allowlist ({len(settings.allowed_emails)} users)")
    else:
        print("\nAuthentication: One-Time PIN")
        print("   Users will receive an email with a code to access the dashboard.")
        print("   To restrict to specific emails, re-run with:")
        print("   MAHORAGA_ALLOWED_EMAILS=you@example.com,team@example.com uv run access-setup")

    print("\nNOTE: It may take a few minutes for Access to propagate.")
    print("=" * 60 + "\n")


def main(argv: list[str] | None = None, *, transport: httpx.BaseTransport | None = None) -> int:
    parser = argparse.ArgumentParser(
        description="Protect the MAHORAGA worker with Cloudflare Access (idempotent)"
    )
    parser.add_argument("--yes", "-y", action="store_true", help="Run without prompting")
    parser.add_argument("--verbose", action="store_true", help="Print each API request")
    parser.add_argument(
        "--dry-run", action="store_true", help="Show what would be created without creating it"
    )
    parser.add_argument(
        "--timeout", type=float, default=30.0, help="Per-request timeout in seconds (default: 30)"
    )
    args = parser.parse_args(argv)

    try:
        settings = load_settings()
    except MissingConfigurationError as e:
        report_missing_configuration(e)
        return 1

    try:
        domain = extract_domain(settings.worker_url)
    except ValueError as e:
        print(f"[ERROR] {e}", file=sys.stderr)
        return 1

    print_header(settings, domain)

    if not (args.yes or args.dry_run) and sys.stdin.isatty():
        print(
            "This will create Cloudflare Access objects in your account (idempotent).\n"
            "Re-run is safe. Continue? [y/N] ",
            end="",
        )
        answer = input().strip().lower()
        if answer not in ("y", "yes"):
            print("Aborted.")
            return 1

    api = CloudflareAccess(
        account_id=settings.account_id,
        token=settings.api_token,
        timeout_s=args.timeout,
        verbose=args.verbose,
        transport=transport,
    )
    try:
        result = ensure_access(
            api,
            domain=domain,
            app_name=settings.app_name,
            emails=settings.allowed_emails,
            dry_run=args.dry_run,
        )
    except CloudflareAPIError as e:
        print(f"\n[ERROR] Cloudflare API error: {e}", file=sys.stderr)
        return 1
    except (httpx.HTTPError, ValueError) as e:
        print(f"\n[ERROR] {e}", file=sys.stderr)
        return 1
    finally:
        api.close()

    print_summary(settings, result)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
