"""Lookup of the certified container images for a given operator release."""

from __future__ import annotations

import re
import urllib.error
import urllib.request
from collections.abc import Callable
from dataclasses import dataclass, field

_RELEASE_NOTES_ROOT = "https://docs.percona.com/percona-operator-for-mysql/pxc/ReleaseNotes/"
_RELEASE_NOTES_PAGE = _RELEASE_NOTES_ROOT + "Kubernetes-Operator-for-PXC-RN{version}.html"
_CERTIFIED_ANCHOR = "#percona-certified-images"
_FETCH_TIMEOUT = 45.0

_IMAGE_RE = re.compile(r"\b(percona/[a-z0-9./-]+:[a-z0-9._-]+)\b", re.IGNORECASE | re.ASCII)

_SECTION_KEYS = (
    'id="percona-certified-images"',
    "id='percona-certified-images'",
    'name="percona-certified-images"',
)


class CertifiedFetchError(Exception):
    """Raised when the certified image list cannot be obtained."""


def sanitize_cr_version_for_url(version: str) -> str:
    """Keep only digits and dots of a CR version."""
    return "".join(ch for ch in version.strip() if "0" <= ch <= "9" or ch == ".")


def certified_pxc_link_url(version: str) -> str:
    """Return the release-notes URL pointing at the certified images section."""
    clean = sanitize_cr_version_for_url(version)
    if not clean:
        return _RELEASE_NOTES_ROOT
    return _RELEASE_NOTES_PAGE.format(version=clean) + _CERTIFIED_ANCHOR


def normalize_oci_image_ref(image: str) -> str:
    """Lower-case an image reference, dropping a docker.io/ prefix and any digest."""
    image = image.strip().lower()
    if not image:
        return ""
    image = image.removeprefix("docker.io/")
    image = image.split("@", 1)[0]
    return image.strip()


def certified_section_suffix(html: str) -> str:
    """Return the HTML from the certified-images anchor onward, or the whole page."""
    lowered = html.lower()
    for key in _SECTION_KEYS:
        index = lowered.find(key)
        if index >= 0:
            return html[index:]
    index = lowered.find("percona certified images")
    if index >= 0:
        return html[index:]
    return html


def _image_refs_in(section: str) -> frozenset[str]:
    refs = (normalize_oci_image_ref(m.group(1)) for m in _IMAGE_RE.finditer(section))
    return frozenset(ref for ref in refs if ref)


def fetch_certified_percona_image_refs(version: str) -> tuple[frozenset[str], str]:
    """Download the release notes and return (normalized image refs, documentation URL)."""
    clean = sanitize_cr_version_for_url(version)
    if not clean:
        raise CertifiedFetchError("invalid or empty crVersion for release notes URL")
    page_url = _RELEASE_NOTES_PAGE.format(version=clean)
    doc_url = certified_pxc_link_url(version)
    try:
        with urllib.request.urlopen(page_url, timeout=_FETCH_TIMEOUT) as response:
            if response.status != 200:
                raise CertifiedFetchError(f"GET {page_url}: {response.status} {response.reason}")
            body = response.read()
    except urllib.error.HTTPError as exc:
        raise CertifiedFetchError(f"GET {page_url}: {exc.code} {exc.reason}") from exc
    except (urllib.error.URLError, OSError) as exc:
        raise CertifiedFetchError(f"GET {page_url}: {exc}") from exc
    html = body.decode("utf-8", errors="replace")
    refs = _image_refs_in(certified_section_suffix(html))
    if not refs:
        raise CertifiedFetchError(
            "no percona/… image references found under certified images (docs layout may have changed)"
        )
    return refs, doc_url


Fetcher = Callable[[str], "tuple[frozenset[str], str]"]


@dataclass
class CertifiedImageCache:
    """Remembers certified image lists per CR version so each is fetched once."""

    enabled: bool = True
    fetch: Fetcher = fetch_certified_percona_image_refs
    _store: dict[str, tuple[frozenset[str] | None, str, str | None]] = field(
        default_factory=dict, init=False, repr=False
    )

    def lookup(self, cr_version: str) -> tuple[frozenset[str] | None, str, str | None]:
        """Return (certified refs or None, documentation URL, error message or None)."""
        version = cr_version.strip()
        doc_url = certified_pxc_link_url(version)
        if not version:
            return None, doc_url, "no spec.crVersion on the Custom Resource"
        if not self.enabled:
            return None, doc_url, "certified image fetch disabled (-certified-images=false)"
        cached = self._store.get(version)
        if cached is not None:
            return cached
        try:
            refs, url = self.fetch(version)
            entry: tuple[frozenset[str] | None, str, str | None] = (refs, url, None)
        except CertifiedFetchError as exc:
            entry = (None, doc_url, str(exc))
        self._store[version] = entry
        return entry