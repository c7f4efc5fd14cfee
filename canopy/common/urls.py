"""URL manipulation."""

from urllib.parse import urljoin


def merge_urls(url: str, new_url: str) -> str:
    """Resolve ``new_url`` against the absolute ``url``.

    ``new_url`` can be absolute, protocol-relative, root-relative or
    relative; missing parts are filled in from ``url``.

    Example::

        merge_urls("https://foo.pl/bar/baz", "foo")   # https://foo.pl/bar/foo
        merge_urls("https://foo.pl/bar/baz", "/baz")  # https://foo.pl/baz
    """
    return urljoin(url, new_url)
