from unittest.mock import MagicMock

import pytest

from provisioning.change_detector import (
    ChangeResult,
    detect_change,
    invalidate_caches,
    reconcile_tracked_value,
)


@pytest.fixture
def cache_dir(tmp_path):
    cache = tmp_path / "cache"
    (cache / "compiled").mkdir(parents=True)
    (cache / "compiled" / "page.html").write_text("old")
    (cache / "entry").write_text("old")
    return cache


@pytest.mark.parametrize(
    "previous, expected",
    [
        (None, ChangeResult.FIRST_RUN),
        ("", ChangeResult.FIRST_RUN),
        ("https://a.example", ChangeResult.UNCHANGED),
        ("https://b.example", ChangeResult.CHANGED),
        ("https://a.example/", ChangeResult.CHANGED),
    ],
)
def test_detect_change(previous, expected, mock_logger):
    detection = detect_change(
        lambda: previous, "https://a.example", current_logger=mock_logger
    )
    assert detection.result is expected
    assert detection.desired == "https://a.example"


def test_read_failure_is_unknown(mock_logger):
    def _boom():
        raise RuntimeError("connection lost")

    detection = detect_change(_boom, "https://a.example", current_logger=mock_logger)

    assert detection.result is ChangeResult.UNKNOWN
    assert detection.result.should_invalidate is False
    assert "connection lost" in mock_logger.warning.call_args.args[0]


def test_should_invalidate():
    assert ChangeResult.CHANGED.should_invalidate
    assert ChangeResult.FIRST_RUN.should_invalidate
    assert not ChangeResult.UNCHANGED.should_invalidate
    assert not ChangeResult.UNKNOWN.should_invalidate


def test_invalidate_caches_counts_entries(cache_dir, tmp_path, app_settings, mock_logger):
    other = tmp_path / "missing"
    assert invalidate_caches([cache_dir, other], app_settings, mock_logger) == 2
    assert cache_dir.is_dir()
    assert list(cache_dir.iterdir()) == []


def test_unchanged_value_keeps_cache(cache_dir, mock_logger):
    write = MagicMock()
    hook = MagicMock()

    detection = reconcile_tracked_value(
        lambda: "https://a.example",
        write,
        "https://a.example",
        cache_dirs=[cache_dir],
        on_invalidate=hook,
        current_logger=mock_logger,
    )

    assert detection.result is ChangeResult.UNCHANGED
    write.assert_not_called()
    hook.assert_not_called()
    assert (cache_dir / "entry").exists()


def test_changed_value_writes_then_clears(cache_dir, mock_logger):
    calls = []

    def _write(value):
        calls.append(("write", value, (cache_dir / "entry").exists()))

    def _hook(detection):
        calls.append(("hook", detection.previous, (cache_dir / "entry").exists()))

    detection = reconcile_tracked_value(
        lambda: "https://old.example",
        _write,
        "https://new.example",
        cache_dirs=[cache_dir],
        on_invalidate=_hook,
        current_logger=mock_logger,
    )

    assert detection.result is ChangeResult.CHANGED
    assert calls == [
        ("write", "https://new.example", True),
        ("hook", "https://old.example", False),
    ]
    assert list(cache_dir.iterdir()) == []


def test_first_run_clears_cache(cache_dir, mock_logger):
    reconcile_tracked_value(
        lambda: None, MagicMock(), "https://a.example", cache_dirs=[cache_dir], current_logger=mock_logger
    )
    assert list(cache_dir.iterdir()) == []


def test_unknown_writes_but_keeps_cache(cache_dir, mock_logger):
    write = MagicMock()

    reconcile_tracked_value(
        MagicMock(side_effect=RuntimeError("timeout")),
        write,
        "https://a.example",
        cache_dirs=[cache_dir],
        current_logger=mock_logger,
    )

    write.assert_called_once_with("https://a.example")
    assert (cache_dir / "entry").exists()


def test_failed_write_leaves_cache(cache_dir, mock_logger):
    write = MagicMock(side_effect=RuntimeError("read-only"))

    with pytest.raises(RuntimeError):
        reconcile_tracked_value(
            lambda: "https://old.example",
            write,
            "https://new.example",
            cache_dirs=[cache_dir],
            current_logger=mock_logger,
        )

    assert (cache_dir / "entry").exists()
