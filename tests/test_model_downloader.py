"""Tests for the staged model repository downloader."""

from unittest.mock import MagicMock, patch

import pytest
import requests

from murmur.core.asr.errors import DownloadError
from murmur.core.asr.model_downloader import ModelDownloader

FILES = {
    "config.json": b'{"alignment_heads": []}',
    "model.bin": b"\x01\x02\x03\x04\x05\x06\x07\x08",
    "vocabulary.txt": b"hello\nworld\n",
}


def file_response(data):
    response = MagicMock()
    response.__enter__.return_value = response
    response.headers = {"content-length": str(len(data))}
    response.iter_content.side_effect = lambda chunk_size: [
        data[i:i + chunk_size] for i in range(0, len(data), chunk_size)
    ]
    return response


def fake_get(files=FILES, fail_on=None):
    def get(url, stream=False, timeout=None):
        if "/api/models/" in url:
            response = MagicMock()
            response.json.return_value = {
                "siblings": [{"rfilename": ".gitattributes"}]
                + [{"rfilename": name} for name in files]
            }
            return response

        name = url.rsplit("/", 1)[-1]
        if name == fail_on:
            raise requests.HTTPError(f"404 for {name}")
        return file_response(files[name])

    return get


class TestModelDownloader:
    @patch("murmur.core.asr.model_downloader.requests.get")
    def test_downloads_all_files(self, mock_get, tmp_path):
        mock_get.side_effect = fake_get()
        downloader = ModelDownloader(str(tmp_path), chunk_size=4)

        folder = downloader.download("tiny", "Systran")

        assert folder == str(tmp_path / "faster-whisper-tiny")
        for name, data in FILES.items():
            assert (tmp_path / "faster-whisper-tiny" / name).read_bytes() == data
        assert not (tmp_path / "faster-whisper-tiny" / ".gitattributes").exists()
        assert not list(tmp_path.glob("*.partial"))

    @patch("murmur.core.asr.model_downloader.requests.get")
    def test_requests_expected_urls(self, mock_get, tmp_path):
        mock_get.side_effect = fake_get()

        ModelDownloader(str(tmp_path)).download("base.en", "Systran")

        urls = [c.args[0] for c in mock_get.call_args_list]
        assert urls[0] == "https://huggingface.co/api/models/Systran/faster-whisper-base.en"
        assert (
            "https://huggingface.co/Systran/faster-whisper-base.en/resolve/main/model.bin"
            in urls
        )

    @patch("murmur.core.asr.model_downloader.requests.get")
    def test_progress_is_monotonic_and_completes(self, mock_get, tmp_path):
        mock_get.side_effect = fake_get()
        values = []

        ModelDownloader(str(tmp_path), chunk_size=4).download(
            "tiny", on_progress=values.append
        )

        assert values
        assert all(0.0 <= v <= 1.0 for v in values)
        assert all(b >= a for a, b in zip(values, values[1:]))
        assert values[-1] == 1.0

    @patch("murmur.core.asr.model_downloader.requests.get")
    def test_cancel_returns_none_and_cleans_up(self, mock_get, tmp_path):
        mock_get.side_effect = fake_get()

        folder = ModelDownloader(str(tmp_path)).download(
            "tiny", should_cancel=lambda: True
        )

        assert folder is None
        assert not (tmp_path / "faster-whisper-tiny").exists()
        assert not list(tmp_path.glob("*.partial"))

    @patch("murmur.core.asr.model_downloader.requests.get")
    def test_cancel_method_stops_download(self, mock_get, tmp_path):
        mock_get.side_effect = fake_get()
        downloader = ModelDownloader(str(tmp_path), chunk_size=2)

        def cancel_midway(fraction):
            if fraction > 0.2:
                downloader.cancel()

        assert downloader.download("tiny", on_progress=cancel_midway) is None

    @patch("murmur.core.asr.model_downloader.requests.get")
    def test_http_error_raises_download_error(self, mock_get, tmp_path):
        mock_get.side_effect = fake_get(fail_on="model.bin")

        with pytest.raises(DownloadError):
            ModelDownloader(str(tmp_path)).download("tiny")

        assert not (tmp_path / "faster-whisper-tiny").exists()
        assert not list(tmp_path.glob("*.partial"))

    @patch("murmur.core.asr.model_downloader.requests.get")
    def test_empty_repository_raises(self, mock_get, tmp_path):
        mock_get.side_effect = fake_get(files={})

        with pytest.raises(DownloadError, match="no files"):
            ModelDownloader(str(tmp_path)).download("tiny")

    @patch("murmur.core.asr.model_downloader.requests.get")
    def test_redownload_replaces_existing_folder(self, mock_get, tmp_path):
        stale = tmp_path / "faster-whisper-tiny"
        stale.mkdir()
        (stale / "broken.bin").write_bytes(b"\x00")
        mock_get.side_effect = fake_get()

        ModelDownloader(str(tmp_path)).download("tiny")

        assert not (stale / "broken.bin").exists()
        assert (stale / "model.bin").exists()

    @patch("murmur.core.asr.model_downloader.requests.get")
    def test_superseded_download_leaves_replacement_intact(self, mock_get, tmp_path):
        """Test a cancelled download cleans up only its own staging folder."""
        mock_get.side_effect = fake_get()
        downloader = ModelDownloader(str(tmp_path), chunk_size=4)
        staged_while_overlapping = []
        results = {}

        def replacement_check():
            if not staged_while_overlapping:
                staged_while_overlapping.extend(tmp_path.glob(".faster-whisper-tiny.*.partial"))
            return False

        def superseded_check():
            if "replacement" not in results:
                results["replacement"] = downloader.download(
                    "tiny", "Systran", should_cancel=replacement_check
                )
            return True

        superseded = downloader.download("tiny", "Systran", should_cancel=superseded_check)

        assert superseded is None
        assert results["replacement"] == str(tmp_path / "faster-whisper-tiny")
        assert len({p.name for p in staged_while_overlapping}) == 2
        for name, data in FILES.items():
            assert (tmp_path / "faster-whisper-tiny" / name).read_bytes() == data
        assert not list(tmp_path.glob("*.partial"))
