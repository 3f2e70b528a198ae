"""
Unit tests for download registration.
"""

import threading

import pytest

from relay.utils.download_registry import DownloadRegistry, build_download_name


class TestBuildDownloadName:

    @pytest.mark.parametrize("original,extension,keep,expected", [
        ("report.docx", "pdf", False, "report.pdf"),
        ("archive.tar.gz", "zip", False, "archive.tar.zip"),
        ("README", "html", False, "README.html"),
        ("report.docx", "zip", True, "report.docx.zip"),
        ("report.docx", "tar.gz", True, "report.docx.tar.gz"),
        ("C:\\Users\\me\\notes.txt", "pdf", False, "notes.pdf"),
        ("../../etc/passwd", "pdf", False, "passwd.pdf"),
    ])
    def test_names(self, original, extension, keep, expected):
        assert build_download_name(original, extension, keep) == expected

    @pytest.mark.parametrize("original", [None, ""])
    def test_missing_name(self, original):
        assert build_download_name(original, "pdf") is None


class TestDownloadRegistry:

    def test_register_and_lookup(self):
        registry = DownloadRegistry()
        registry.register("abc.pdf", "report.pdf")
        assert registry.lookup("abc.pdf") == "report.pdf"
        assert "abc.pdf" in registry
        assert len(registry) == 1

    def test_missing_name_falls_back_to_id(self):
        registry = DownloadRegistry()
        registry.register("abc.pdf", None)
        assert registry.lookup("abc.pdf") == "abc.pdf"

    def test_evict(self):
        registry = DownloadRegistry()
        registry.register("abc.pdf", "report.pdf")
        assert registry.evict("abc.pdf") is True
        assert registry.evict("abc.pdf") is False
        assert registry.lookup("abc.pdf") is None
        assert len(registry) == 0

    def test_concurrent_registration(self):
        registry = DownloadRegistry()

        def worker(offset):
            for i in range(200):
                registry.register(f"{offset}-{i}.pdf", f"file{i}.pdf")

        threads = [threading.Thread(target=worker, args=(n,)) for n in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert len(registry) == 8 * 200
