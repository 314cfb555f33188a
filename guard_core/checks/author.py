"""Publisher identity check over author, maintainer and contributor entries."""

from __future__ import annotations

import re
from dataclasses import dataclass
from types import MappingProxyType
from typing import Any, Iterable, Mapping

from ..patterns import CompiledPattern, compile_patterns
from ..types import AuthorFilterConfig, BlockedBy, PolicyDecision

__all__ = [
    "AuthorChecker",
    "AuthorIdentity",
    "REGION_DOMAINS",
    "extract_identities",
    "normalize_author",
]

REGION_DOMAINS: Mapping[str, tuple[str, ...]] = MappingProxyType(
    {
        "ru": (".ru", "yandex.ru", "mail.ru", "rambler.ru", "ya.ru", "bk.ru", "list.ru"),
        "cn": (".cn", "qq.com", "163.com", "126.com", "sina.com", "sohu.com"),
        "by": (".by", "tut.by", "mail.by"),
        "kp": (".kp",),
        "ir": (".ir",),
        "sy": (".sy",),
        "cu": (".cu",),
        "sd": (".sd",),
    }
)

_EMAIL_RE = re.compile(r"<([^>]+)>")
_NAME_RE = re.compile(r"^([^<(]+)")
_URL_RE = re.compile(r"\(([^)]+)\)")
_PEOPLE_FIELDS = ("maintainers", "contributors")


@dataclass(frozen=True)
class AuthorIdentity:
    name: str | None = None
    email: str | None = None
    url: str | None = None

    def describe(self) -> str:
        if self.name and self.email:
            return f"{self.name} <{self.email}>"
        return self.name or self.email or "unknown"


def _clean(value: Any) -> str | None:
    if not isinstance(value, str):
        return None
    return value.strip() or None


def normalize_author(raw: Any) -> AuthorIdentity | None:
    """Turn ``"Name <email> (url)"`` or ``{name, email, url}`` into one shape."""
    if isinstance(raw, str):
        email = _EMAIL_RE.search(raw)
        name = _NAME_RE.search(raw)
        url = _URL_RE.search(raw)
        identity = AuthorIdentity(
            name=_clean(name.group(1)) if name else None,
            email=_clean(email.group(1)) if email else None,
            url=_clean(url.group(1)) if url else None,
        )
    elif isinstance(raw, Mapping):
        identity = AuthorIdentity(
            name=_clean(raw.get("name")),
            email=_clean(raw.get("email")),
            url=_clean(raw.get("url")),
        )
    else:
        return None
    if identity.name is None and identity.email is None:
        return None
    return identity


def extract_identities(*records: Mapping[str, Any]) -> list[AuthorIdentity]:
    seen: dict[AuthorIdentity, None] = {}
    for record in records:
        entries: list[Any] = []
        if record.get("author"):
            entries.append(record["author"])
        for key in _PEOPLE_FIELDS:
            value = record.get(key)
            if isinstance(value, list):
                entries.extend(value)
        for entry in entries:
            identity = normalize_author(entry)
            if identity is not None:
                seen.setdefault(identity, None)
    return list(seen)


class AuthorChecker:
    def __init__(
        self,
        config: AuthorFilterConfig | None = None,
        region_domains: Mapping[str, Iterable[str]] = REGION_DOMAINS,
    ) -> None:
        self.config = config or AuthorFilterConfig()
        self._names = frozenset(a.strip().lower() for a in self.config.blocked_authors)
        self._name_patterns = compile_patterns(self.config.blocked_author_patterns, re.IGNORECASE)
        self._emails = frozenset(e.strip().lower() for e in self.config.blocked_emails)
        self._email_patterns = compile_patterns(self.config.blocked_email_patterns, re.IGNORECASE)
        self._domains = tuple(dict.fromkeys(d.strip().lower() for d in self.config.blocked_email_domains))
        self._regions: dict[str, tuple[str, ...]] = {}
        for region in self.config.blocked_regions:
            key = region.strip().lower()
            self._regions[key] = tuple(region_domains.get(key, ()))

    @property
    def enabled(self) -> bool:
        return self.config.enabled

    def check(self, *records: Mapping[str, Any]) -> PolicyDecision:
        if not self.config.enabled:
            return PolicyDecision.allow()
        identities = extract_identities(*records)
        if not identities:
            if self.config.require_verified_email:
                return PolicyDecision.block("No author information available", BlockedBy.AUTHOR)
            return PolicyDecision.allow()
        for identity in identities:
            decision = self.check_identity(identity)
            if decision.blocked:
                return decision
        return PolicyDecision.allow()

    def check_identity(self, identity: AuthorIdentity) -> PolicyDecision:
        if identity.name:
            if identity.name.lower() in self._names:
                return self._block(f'Author name "{identity.name}" is blocked')
            if _any_match(self._name_patterns, identity.name):
                return self._block(f'Author name "{identity.name}" matches blocked pattern')

        if identity.email:
            email = identity.email.lower()
            if email in self._emails:
                return self._block(f'Author email "{identity.email}" is blocked')
            if _any_match(self._email_patterns, identity.email):
                return self._block(f'Author email "{identity.email}" matches blocked pattern')
            for domain in self._domains:
                if _domain_matches(email, domain):
                    return self._block(f'Author email domain "{domain}" is blocked')
            for region, domains in self._regions.items():
                if any(_domain_matches(email, domain) for domain in domains):
                    return self._block(f'Author email from blocked region "{region.upper()}"')

        return PolicyDecision.allow()

    def summary(self) -> dict[str, object]:
        return {
            "enabled": self.config.enabled,
            "blockedAuthors": len(self._names),
            "blockedAuthorPatterns": len(self._name_patterns),
            "blockedEmails": len(self._emails),
            "blockedEmailPatterns": len(self._email_patterns),
            "blockedEmailDomains": len(self._domains),
            "blockedRegions": len(self._regions),
        }

    @staticmethod
    def _block(reason: str) -> PolicyDecision:
        return PolicyDecision.block(reason, BlockedBy.AUTHOR)


def _any_match(patterns: Iterable[CompiledPattern], value: str) -> bool:
    return any(pattern.search(value) for pattern in patterns)


def _domain_matches(email: str, domain: str) -> bool:
    if not domain:
        return False
    return email.endswith(domain) or f"@{domain}" in email
