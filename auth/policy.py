"""
auth/policy.py -- Route-prefix access policy.

Policy is data: an AccessPolicy instance is handed to the authorization
middleware at construction time. Everything here is pure (no I/O, no
request objects), so the rules are unit-testable on plain strings.

Public and static prefixes match whole path segments: "/login" opens
"/login" and "/login/..." but not "/login-help". Rules are plain prefix
matches, ordered, and the first matching prefix decides. A path that
matches no rule is open to any authenticated principal.
"""

from __future__ import annotations

from dataclasses import dataclass

from auth.models import Role


def _under(path: str, prefix: str) -> bool:
    return path == prefix or path.startswith(prefix.rstrip("/") + "/")


@dataclass(frozen=True)
class RouteRule:
    prefix: str
    roles: frozenset[Role]

    def matches(self, path: str) -> bool:
        return path.startswith(self.prefix)


@dataclass(frozen=True)
class AccessPolicy:
    public_prefixes: tuple[str, ...]
    static_prefixes: tuple[str, ...]
    rules: tuple[RouteRule, ...]
    api_prefix: str = "/api"
    login_path: str = "/login"
    unauthorized_path: str = "/unauthorized"

    def is_open(self, path: str) -> bool:
        """True for public routes and static assets -- no identity needed."""
        return any(_under(path, p) for p in self.public_prefixes + self.static_prefixes)

    def is_api(self, path: str) -> bool:
        return _under(path, self.api_prefix)

    def rule_for(self, path: str) -> RouteRule | None:
        for rule in self.rules:
            if rule.matches(path):
                return rule
        return None

    def permits(self, path: str, role: Role) -> bool:
        rule = self.rule_for(path)
        return rule is None or Role(role) in rule.roles


def _rules(*rows: tuple[str, frozenset[Role]]) -> tuple[RouteRule, ...]:
    """Expand each page prefix into the page rule and its /api twin."""
    expanded: list[RouteRule] = []
    for prefix, roles in rows:
        expanded.append(RouteRule(prefix, roles))
        expanded.append(RouteRule("/api" + prefix, roles))
    return tuple(expanded)


DEFAULT_POLICY = AccessPolicy(
    public_prefixes=(
        "/login",
        "/register",
        "/api/auth/login",
        "/api/auth/register",
        # refresh / logout / me read and verify the cookies themselves
        "/api/auth",
        "/logout",
        "/unauthorized",
        "/api/health",
    ),
    static_prefixes=("/static", "/favicon.ico"),
    rules=_rules(
        ("/platform", frozenset({Role.OWNER})),
        ("/company", frozenset({Role.OWNER, Role.COMPANY_ADMIN})),
        ("/warehouse", frozenset({Role.OWNER, Role.COMPANY_ADMIN, Role.WAREHOUSE_AGENT})),
        ("/driver", frozenset({Role.DRIVER})),
    ),
)
