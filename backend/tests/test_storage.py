import threading
from pathlib import Path

import pytest

from mediabatch.errors import RegistryCollisionError
from mediabatch.storage import OutputRegistry, ScratchSpace


class TestScratchSpace:
    """Tests for upload staging and startup cleanup."""

    def test_prepare_creates_and_empties(self, tmp_path: Path) -> None:
        uploads, outputs = tmp_path / "uploads", tmp_path / "processed"
        outputs.mkdir()
        (outputs / "stale.webp").write_bytes(b"old")
        (outputs / "nested").mkdir()
        (outputs / "nested" / "deep.avif").write_bytes(b"old")

        ScratchSpace(uploads, outputs).prepare()

        assert uploads.is_dir()
        assert list(outputs.iterdir()) == []

    def test_staging_paths_are_unique_and_keep_extension(self, scratch: ScratchSpace) -> None:
        a = scratch.staging_path("photo.PNG")
        b = scratch.staging_path("photo.PNG")
        assert a != b
        assert a.suffix == ".png"
        assert a.parent == scratch.upload_dir

    def test_staging_path_ignores_user_directories(self, scratch: ScratchSpace) -> None:
        path = scratch.staging_path("../../etc/passwd")
        assert path.parent == scratch.upload_dir
        assert "passwd" not in path.name

    def test_discard_missing_file_is_quiet(self, scratch: ScratchSpace) -> None:
        scratch.discard(scratch.upload_dir / "never-existed.png")


class TestOutputRegistry:
    """Tests for artifact registration and authorization lookups."""

    def test_register_and_resolve(self, registry: OutputRegistry) -> None:
        vpath = registry.allocate("photo", [".webp"])[".webp"]
        location = registry.location_for(vpath)
        location.write_bytes(b"data")
        registry.register(vpath, location)

        assert vpath == "/processed/photo.webp"
        assert registry.resolve(vpath) == location.resolve()
        assert vpath in registry

    def test_register_twice_is_a_collision(self, registry: OutputRegistry) -> None:
        registry.register("/processed/x.webp", registry.output_dir / "x.webp")
        with pytest.raises(RegistryCollisionError):
            registry.register("/processed/x.webp", registry.output_dir / "other.webp")
        assert registry.resolve("/processed/x.webp") == (registry.output_dir / "x.webp").resolve()

    def test_unregistered_file_on_disk_is_not_resolvable(self, registry: OutputRegistry) -> None:
        (registry.output_dir / "guessable.avif").write_bytes(b"secret")
        assert registry.resolve("/processed/guessable.avif") is None
        assert registry.resolve("/processed/../uploads/x.png") is None

    def test_allocate_disambiguates_same_base(self, registry: OutputRegistry) -> None:
        first = registry.allocate("photo", [".avif", ".webp"])
        second = registry.allocate("photo", [".avif", ".webp"])
        assert first == {".avif": "/processed/photo.avif", ".webp": "/processed/photo.webp"}
        assert second == {".avif": "/processed/photo-2.avif", ".webp": "/processed/photo-2.webp"}

    def test_allocate_keeps_one_stem_per_item(self, registry: OutputRegistry) -> None:
        registry.allocate("photo", [".webp"])
        paths = registry.allocate("photo", [".avif", ".webp", "_resized.png"])
        assert paths == {
            ".avif": "/processed/photo-2.avif",
            ".webp": "/processed/photo-2.webp",
            "_resized.png": "/processed/photo-2_resized.png",
        }

    def test_allocate_skips_names_present_on_disk(self, registry: OutputRegistry) -> None:
        (registry.output_dir / "ghost.webp").write_bytes(b"")
        assert registry.allocate("ghost", [".webp"]) == {".webp": "/processed/ghost-2.webp"}

    def test_released_names_are_never_reused(self, registry: OutputRegistry) -> None:
        vpath = registry.allocate("gone", [".webp"])[".webp"]
        location = registry.location_for(vpath)
        location.write_bytes(b"x")
        registry.register(vpath, location)
        location.unlink()
        assert registry.allocate("gone", [".webp"])[".webp"] == "/processed/gone-2.webp"

    def test_concurrent_allocation_is_unique(self, registry: OutputRegistry) -> None:
        results: list[str] = []
        lock = threading.Lock()

        def worker() -> None:
            vpath = registry.allocate("same", [".webp"])[".webp"]
            with lock:
                results.append(vpath)

        threads = [threading.Thread(target=worker) for _ in range(40)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert len(results) == 40
        assert len(set(results)) == 40
