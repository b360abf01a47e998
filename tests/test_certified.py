import pytest

from pxcreport.certified import (
    CertifiedFetchError,
    CertifiedImageCache,
    certified_pxc_link_url,
    certified_section_suffix,
    fetch_certified_percona_image_refs,
    normalize_oci_image_ref,
    sanitize_cr_version_for_url,
)


def test_sanitize_cr_version_for_url():
    assert sanitize_cr_version_for_url("1.19.0") == "1.19.0"
    assert sanitize_cr_version_for_url("v1.2.3-rc") == "1.2.3"


@pytest.mark.parametrize(
    "raw, want",
    [
        ("docker.io/percona/haproxy:2.8.17", "percona/haproxy:2.8.17"),
        ("Percona/HAProxy:2.8.17", "percona/haproxy:2.8.17"),
        ("percona/haproxy:2.8.17@sha256:abc", "percona/haproxy:2.8.17"),
    ],
)
def test_normalize_oci_image_ref(raw, want):
    assert normalize_oci_image_ref(raw) == want


def test_normalize_oci_image_ref_blank():
    assert normalize_oci_image_ref("   ") == ""


def test_certified_link_url_with_version():
    assert certified_pxc_link_url("v1.19.0") == (
        "https://docs.percona.com/percona-operator-for-mysql/pxc/ReleaseNotes/"
        "Kubernetes-Operator-for-PXC-RN1.19.0.html#percona-certified-images"
    )


def test_certified_link_url_without_version():
    assert certified_pxc_link_url("") == "https://docs.percona.com/percona-operator-for-mysql/pxc/ReleaseNotes/"


def test_section_suffix_finds_anchor_case_insensitive():
    html = '<p>intro percona/old:1.0</p><H2 ID="percona-certified-images">Certified</H2>'
    out = certified_section_suffix(html)
    assert out.startswith('ID="percona-certified-images"')
    assert "percona/old" not in out


def test_section_suffix_falls_back_to_heading_text():
    html = "<p>a</p><h2>Percona Certified Images</h2><p>b</p>"
    assert certified_section_suffix(html) == "Percona Certified Images</h2><p>b</p>"


def test_section_suffix_returns_whole_page_without_marker():
    html = "<html><body>nothing here</body></html>"
    assert certified_section_suffix(html) == html


def test_fetch_rejects_empty_version():
    with pytest.raises(CertifiedFetchError, match="invalid or empty crVersion"):
        fetch_certified_percona_image_refs("vX")


def test_lookup_empty_version():
    cache = CertifiedImageCache(enabled=True)
    refs, url, err = cache.lookup("  ")
    assert refs is None
    assert err == "no spec.crVersion on the Custom Resource"
    assert url == certified_pxc_link_url("")


def test_lookup_disabled_does_not_fetch():
    calls = []

    def fetcher(version):
        calls.append(version)
        return frozenset({"percona/pxc:8.0"}), certified_pxc_link_url(version)

    cache = CertifiedImageCache(enabled=False, fetch=fetcher)
    refs, _url, err = cache.lookup("1.19.0")
    assert refs is None
    assert err == "certified image fetch disabled (-certified-images=false)"
    assert calls == []


def test_lookup_caches_per_version():
    calls = []
    images = frozenset({"percona/percona-xtradb-cluster:8.0.41"})

    def fetcher(version):
        calls.append(version)
        return images, certified_pxc_link_url(version)

    cache = CertifiedImageCache(enabled=True, fetch=fetcher)
    first = cache.lookup("1.19.0")
    second = cache.lookup(" 1.19.0 ")
    assert calls == ["1.19.0"]
    assert first == second
    assert first[0] == images
    assert first[2] is None


def test_lookup_records_fetch_error():
    calls = []

    def fetcher(version):
        calls.append(version)
        raise CertifiedFetchError("GET failed: 404 Not Found")

    cache = CertifiedImageCache(enabled=True, fetch=fetcher)
    refs, url, err = cache.lookup("1.18.0")
    again = cache.lookup("1.18.0")
    assert refs is None
    assert err == "GET failed: 404 Not Found"
    assert url == certified_pxc_link_url("1.18.0")
    assert again == (refs, url, err)
    assert calls == ["1.18.0"]