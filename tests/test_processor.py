"""Tests for run_stage: option layering, caching and result normalization."""

from pathlib import Path
from unittest.mock import MagicMock

import pytest

from canopy.common.cache import (
    CacheBackend,
    FileSystemCache,
    MemoryCache,
    NullCache,
)
from canopy.common.checked_html import CheckedHtmlElement, parse_text
from canopy.common.exceptions import (
    DefinitiveFetchException,
    MissingURLException,
    RetriesExhaustedException,
)
from canopy.common.options import DEFAULT_OPTIONS, StageOptions, make_options
from canopy.common.request_manager import SyncRequestManager
from canopy.data_types import FetchError
from canopy.processor import ensure_processors, ensure_seq, run_stage
from tests.utils import FakeSite

PAGE_URL = "http://site.test/dir/page"


def call_options(manager: SyncRequestManager, **overrides) -> StageOptions:
    return StageOptions(
        **{
            "request_manager": manager,
            "html_cache": False,
            "processed_cache": False,
            **overrides,
        }
    )


def text_stage(**overrides) -> StageOptions:
    """Stage options returning the raw body under ``body``."""
    return StageOptions(
        **{
            "parse_fn": parse_text,
            "process_fn": lambda body, ctx: {"body": body},
            **overrides,
        }
    )


class TestOptionLayering:
    """Tests for merging StageOptions layers."""

    def test_only_explicit_fields_override(self) -> None:
        merged = DEFAULT_OPTIONS.merged_with(
            StageOptions(retries=2), StageOptions(updatable=True)
        )
        assert merged.retries == 2
        assert merged.updatable is True
        assert merged.html_cache is True

    def test_later_layers_win(self) -> None:
        merged = DEFAULT_OPTIONS.merged_with(
            StageOptions(retries=2), StageOptions(retries=3)
        )
        assert merged.retries == 3

    def test_none_layers_are_skipped(self) -> None:
        assert DEFAULT_OPTIONS.merged_with(None, None) is DEFAULT_OPTIONS

    def test_retries_must_be_positive(self) -> None:
        with pytest.raises(ValueError):
            StageOptions(retries=0)

    def test_unknown_option_rejected(self) -> None:
        with pytest.raises(ValueError):
            StageOptions(retires=3)

    def test_make_options(self) -> None:
        base = StageOptions(retries=2)
        options = make_options(base, update=True)
        assert options.retries == 2
        assert options.update is True
        assert make_options() == StageOptions()

    def test_default_caches_live_under_data_dir(self, tmp_path: Path) -> None:
        options = StageOptions(data_dir=tmp_path, compress_html=True)
        html_cache = options.html_cache_backend()
        assert html_cache.root == tmp_path / "cache" / "html"
        assert html_cache.compress is True
        assert options.processed_cache_backend().root == (
            tmp_path / "cache" / "processed"
        )

    def test_stage_options_take_precedence_over_call_options(
        self, site: FakeSite, manager: SyncRequestManager
    ) -> None:
        site.set_timeouts("/dir/page", 10)

        with pytest.raises(RetriesExhaustedException) as exc_info:
            run_stage(
                "s",
                {"url": PAGE_URL},
                call_options(manager, retries=2),
                text_stage(retries=3),
            )

        assert exc_info.value.retries == 3
        assert len(site.hits) == 3

    def test_call_options_apply_where_stage_is_silent(
        self, site: FakeSite, manager: SyncRequestManager
    ) -> None:
        site.set_timeouts("/dir/page", 10)

        with pytest.raises(RetriesExhaustedException):
            run_stage(
                "s", {"url": PAGE_URL}, call_options(manager, retries=2), text_stage()
            )

        assert len(site.hits) == 2


class TestRunStage:
    """Tests for the stage executor."""

    def test_fetch_parse_process(
        self, site: FakeSite, manager: SyncRequestManager
    ) -> None:
        site.pages["/dir/page"] = "<html><h1>Hi</h1></html>"

        result = run_stage(
            "s", {"url": PAGE_URL}, call_options(manager), text_stage()
        )

        assert result == [{"body": "<html><h1>Hi</h1></html>"}]

    def test_process_fn_sees_url_and_cache_key(
        self, site: FakeSite, manager: SyncRequestManager
    ) -> None:
        site.pages["/dir/page"] = "x"
        seen = []

        def process(body, ctx):
            seen.append(ctx)
            return None

        result = run_stage(
            "s",
            {"url": PAGE_URL, "id": 7},
            call_options(manager),
            StageOptions(
                parse_fn=parse_text, process_fn=process, cache_template="p/:id"
            ),
        )

        assert result == []
        assert seen == [{"url": PAGE_URL, "id": 7, "cache_key": "p/7"}]

    def test_default_process_fn_wraps_document(
        self, site: FakeSite, manager: SyncRequestManager
    ) -> None:
        site.pages["/dir/page"] = "raw"
        result = run_stage(
            "s", {"url": PAGE_URL}, call_options(manager), StageOptions(parse_fn=parse_text)
        )
        assert result == [{"document": "raw"}]

    def test_processed_cache_hit_skips_fetch(
        self, site: FakeSite, manager: SyncRequestManager
    ) -> None:
        cache = MemoryCache()
        cache.save_value("p/1", [{"cached": True}])

        result = run_stage(
            "s",
            {"url": PAGE_URL, "id": 1},
            call_options(manager, processed_cache=cache),
            text_stage(cache_template="p/:id"),
        )

        assert result == [{"cached": True}]
        assert site.hits == []

    def test_results_are_stored_under_cache_key(
        self, site: FakeSite, manager: SyncRequestManager
    ) -> None:
        site.pages["/dir/page"] = "body"
        html_cache, processed_cache = MemoryCache(), MemoryCache()

        run_stage(
            "s",
            {"url": PAGE_URL, "id": 1},
            call_options(
                manager, html_cache=html_cache, processed_cache=processed_cache
            ),
            text_stage(cache_template="p/:id"),
        )

        assert html_cache.load_raw("p/1") == "body"
        assert processed_cache.load_value("p/1") == [{"body": "body"}]

    def test_unpicklable_results_are_returned_but_not_persisted(
        self,
        site: FakeSite,
        manager: SyncRequestManager,
        tmp_path: Path,
        caplog: pytest.LogCaptureFixture,
    ) -> None:
        """A parsed document in the output shall not break an on-disk cache."""
        site.pages["/dir/page"] = "<html><h1>Hi</h1></html>"
        cache = FileSystemCache(tmp_path)
        options = call_options(manager, processed_cache=cache)
        stage_options = StageOptions(cache_template="d")

        first = run_stage("s", {"url": PAGE_URL}, options, stage_options)
        second = run_stage("s", {"url": PAGE_URL}, options, stage_options)

        for result in (first, second):
            assert isinstance(result[0]["document"], CheckedHtmlElement)
            assert result[0]["document"].text() == "Hi"
        assert "Not persisting processed result for d" in caplog.text
        assert cache.load_value("d") is None
        assert len(site.hits) == 2

    def test_save_called_even_on_null_cache(
        self, site: FakeSite, manager: SyncRequestManager
    ) -> None:
        """Results shall be written through whatever backend is configured."""
        site.pages["/dir/page"] = "body"
        cache = MagicMock(spec=CacheBackend)
        cache.load_value.return_value = None

        run_stage(
            "s",
            {"url": PAGE_URL, "id": 1},
            call_options(manager, processed_cache=cache),
            text_stage(cache_template="p/:id"),
        )

        cache.save_value.assert_called_once_with("p/1", [{"body": "body"}])

    def test_no_cache_key_means_no_caching(
        self, site: FakeSite, manager: SyncRequestManager
    ) -> None:
        site.pages["/dir/page"] = "body"
        cache = MagicMock(spec=CacheBackend, wraps=NullCache())

        run_stage(
            "s",
            {"url": PAGE_URL},
            call_options(manager, processed_cache=cache, html_cache=cache),
            text_stage(),
        )

        cache.save_value.assert_not_called()
        cache.save_raw.assert_not_called()
        cache.load_value.assert_not_called()

    def test_cache_key_fn_beats_template(
        self, site: FakeSite, manager: SyncRequestManager
    ) -> None:
        site.pages["/dir/page"] = "body"
        cache = MemoryCache()

        run_stage(
            "s",
            {"url": PAGE_URL, "id": 1},
            call_options(manager, processed_cache=cache),
            text_stage(
                cache_template="p/:id", cache_key_fn=lambda ctx: f"fn/{ctx['id']}"
            ),
        )

        assert cache.load_value("fn/1") == [{"body": "body"}]
        assert cache.load_value("p/1") is None

    @pytest.mark.parametrize(
        ("update", "updatable", "fetched"),
        [(False, False, False), (True, False, False), (False, True, False), (True, True, True)],
    )
    def test_refresh_requires_update_and_updatable(
        self,
        site: FakeSite,
        manager: SyncRequestManager,
        update: bool,
        updatable: bool,
        fetched: bool,
    ) -> None:
        site.pages["/dir/page"] = "fresh"
        cache = MemoryCache()
        cache.save_raw("p/1", "stale")
        cache.save_value("p/1", [{"body": "stale"}])

        result = run_stage(
            "s",
            {"url": PAGE_URL, "id": 1},
            call_options(
                manager, html_cache=cache, processed_cache=cache, update=update
            ),
            text_stage(cache_template="p/:id", updatable=updatable),
        )

        assert bool(site.hits) is fetched
        assert result == [{"body": "fresh" if fetched else "stale"}]
        if fetched:
            assert cache.load_value("p/1") == [{"body": "fresh"}]
            assert cache.load_raw("p/1") == "fresh"

    def test_html_cache_hit_is_reprocessed(
        self, site: FakeSite, manager: SyncRequestManager
    ) -> None:
        """A raw cache hit without a processed entry shall skip the fetch."""
        cache = MemoryCache()
        cache.save_raw("p/1", "from cache")

        result = run_stage(
            "s",
            {"url": PAGE_URL, "id": 1},
            call_options(manager, html_cache=cache),
            text_stage(cache_template="p/:id"),
        )

        assert result == [{"body": "from cache"}]
        assert site.hits == []

    def test_url_fn(self, site: FakeSite, manager: SyncRequestManager) -> None:
        site.pages["/items/5"] = "five"

        result = run_stage(
            "s",
            {"item": 5},
            call_options(manager),
            text_stage(url_fn=lambda ctx: f"http://site.test/items/{ctx['item']}"),
        )

        assert result == [{"body": "five"}]

    def test_missing_url_raises(self, manager: SyncRequestManager) -> None:
        with pytest.raises(MissingURLException) as exc_info:
            run_stage("s", {"title": "x"}, call_options(manager), text_stage())
        assert exc_info.value.stage_name == "s"

    def test_requires_request_manager(self) -> None:
        with pytest.raises(ValueError):
            run_stage(
                "s",
                {"url": PAGE_URL},
                StageOptions(html_cache=False, processed_cache=False),
                text_stage(),
            )

    def test_child_urls_resolved_against_page_url(
        self, site: FakeSite, manager: SyncRequestManager
    ) -> None:
        site.pages["/dir/page"] = "x"

        result = run_stage(
            "s",
            {"url": PAGE_URL},
            call_options(manager),
            text_stage(
                process_fn=lambda body, ctx: [
                    {"processor": "next", "url": "other"},
                    {"processor": "next", "url": "/root"},
                    {"processor": "next", "url": "https://elsewhere.test/"},
                    {"leaf": True},
                ]
            ),
        )

        assert [ctx.get("url") for ctx in result] == [
            "http://site.test/dir/other",
            "http://site.test/root",
            "https://elsewhere.test/",
            None,
        ]

    def test_children_with_processor_but_no_url_are_dropped(
        self, site: FakeSite, manager: SyncRequestManager
    ) -> None:
        site.pages["/dir/page"] = "x"

        result = run_stage(
            "s",
            {"url": PAGE_URL},
            call_options(manager),
            text_stage(
                process_fn=lambda body, ctx: [
                    {"processor": "next", "url": None, "a": 1},
                    {"processor": "next", "url": "ok", "a": 2},
                ]
            ),
        )

        assert [ctx["a"] for ctx in result] == [2]


class TestErrorRouting:
    """Tests for handing error responses to the error handler."""

    def test_404_prunes_with_default_handler(
        self, site: FakeSite, manager: SyncRequestManager, caplog
    ) -> None:
        result = run_stage(
            "s", {"url": PAGE_URL}, call_options(manager), text_stage()
        )

        assert result == []
        assert "pruning scrape tree" in caplog.text

    def test_500_raises_with_default_handler(
        self, site: FakeSite, manager: SyncRequestManager
    ) -> None:
        site.set_status("/dir/page", 500)

        with pytest.raises(DefinitiveFetchException) as exc_info:
            run_stage("s", {"url": PAGE_URL}, call_options(manager), text_stage())

        assert exc_info.value.status_code == 500
        assert len(site.hits) == 1

    def test_custom_handler_result_is_cached(
        self, site: FakeSite, manager: SyncRequestManager
    ) -> None:
        site.set_status("/dir/page", 410)
        errors = []
        cache = MemoryCache()

        def handler(url: str, error: FetchError):
            errors.append((url, error.status_code))
            return {"gone": True}

        result = run_stage(
            "s",
            {"url": PAGE_URL, "id": 1},
            call_options(manager, processed_cache=cache),
            text_stage(error_handler=handler, cache_template="p/:id"),
        )

        assert result == [{"gone": True}]
        assert errors == [(PAGE_URL, 410)]
        assert cache.load_value("p/1") == [{"gone": True}]


class TestNormalization:
    """Tests for result normalization helpers."""

    def test_ensure_seq(self) -> None:
        assert ensure_seq(None) == []
        assert ensure_seq({"a": 1}) == [{"a": 1}]
        assert ensure_seq(iter([{"a": 1}, {"b": 2}])) == [{"a": 1}, {"b": 2}]

    def test_ensure_processors(self) -> None:
        contexts = [
            {"processor": "p", "url": "u"},
            {"processor": "p"},
            {"leaf": 1},
        ]
        assert ensure_processors(contexts) == [
            {"processor": "p", "url": "u"},
            {"leaf": 1},
        ]
