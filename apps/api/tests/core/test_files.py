"""
Unit tests for the local file store.
"""

import pytest

from enrollment.core.files import LocalFileStore, UnsafeFilePathError


@pytest.fixture
def store(tmp_path):
    upload_dir = tmp_path / "uploads"
    upload_dir.mkdir()
    return LocalFileStore(upload_dir)


class TestResolve:
    """Tests for turning stored references into paths."""

    @pytest.mark.parametrize(
        "file_ref",
        [
            "/uploads/signed-1.pdf",
            "uploads/signed-1.pdf",
            "signed-1.pdf",
            "//uploads//signed-1.pdf",
        ],
    )
    def test_prefixes_are_stripped(self, store, file_ref):
        """Leading slashes and the uploads/ prefix are ignored."""
        assert store.resolve(file_ref) == store.upload_dir / "signed-1.pdf"

    def test_nested_path_is_kept(self, store):
        assert store.resolve("/uploads/2025/response.pdf") == store.upload_dir / "2025" / "response.pdf"

    @pytest.mark.parametrize("file_ref", ["/uploads/../secret.txt", "../../etc/passwd"])
    def test_escaping_reference_is_refused(self, store, file_ref):
        with pytest.raises(UnsafeFilePathError):
            store.resolve(file_ref)

    @pytest.mark.parametrize("file_ref", ["", "/", "/uploads/"])
    def test_empty_reference_is_refused(self, store, file_ref):
        with pytest.raises(UnsafeFilePathError):
            store.resolve(file_ref)


class TestFileOperations:
    """Tests for exists/delete/is_available."""

    @pytest.mark.asyncio
    async def test_delete_existing_file(self, store):
        path = store.upload_dir / "signed-1.pdf"
        path.write_bytes(b"%PDF")

        assert await store.exists(path)
        await store.delete(path)
        assert not await store.exists(path)

    @pytest.mark.asyncio
    async def test_delete_missing_file_raises(self, store):
        with pytest.raises(FileNotFoundError):
            await store.delete(store.upload_dir / "nope.pdf")

    @pytest.mark.asyncio
    async def test_is_available(self, tmp_path, store):
        assert await store.is_available()
        assert not await LocalFileStore(tmp_path / "missing").is_available()
