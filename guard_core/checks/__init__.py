"""Checks that need full package metadata or external data."""

from .age import PackageAgeChecker
from .author import REGION_DOMAINS, AuthorChecker, AuthorIdentity, normalize_author
from .cve import CveChecker, CveScanResult
from .license import COMMON_OPEN_SOURCE_LICENSES, COPYLEFT_LICENSES, LicenseChecker

__all__ = [
    "AuthorChecker",
    "AuthorIdentity",
    "COMMON_OPEN_SOURCE_LICENSES",
    "COPYLEFT_LICENSES",
    "CveChecker",
    "CveScanResult",
    "LicenseChecker",
    "PackageAgeChecker",
    "REGION_DOMAINS",
    "normalize_author",
]
