import json
import tempfile
import unittest
from pathlib import Path

from fleet_deployer.workspace import WorkspaceManager


class WorkspaceManagerTests(unittest.TestCase):
    def test_prepare_creates_directory_and_metadata(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            manager = WorkspaceManager(Path(tmp))
            ctx = manager.prepare("https://github.com/example/project.git")

            self.assertTrue(ctx.run_dir.exists())
            self.assertTrue(ctx.run_dir.name.startswith("project-"))
            self.assertEqual(ctx.source_dir, ctx.run_dir / "source")

            metadata = json.loads(ctx.metadata_file.read_text(encoding="utf-8"))
            self.assertEqual(metadata["label"], "https://github.com/example/project.git")
            self.assertEqual(metadata["run_id"], ctx.run_id)

    def test_runs_get_separate_directories(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            manager = WorkspaceManager(Path(tmp))
            first = manager.prepare("repo")
            second = manager.prepare("repo")
            self.assertNotEqual(first.run_dir, second.run_dir)

    def test_update_metadata_merges(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            manager = WorkspaceManager(Path(tmp))
            ctx = manager.prepare("repo")
            manager.update_metadata(ctx, commit_sha="abc123")
            metadata = manager.read_metadata(ctx)
            self.assertEqual(metadata["commit_sha"], "abc123")
            self.assertEqual(metadata["label"], "repo")

    def test_cleanup_removes_directory(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            manager = WorkspaceManager(Path(tmp))
            ctx = manager.prepare("https://github.com/example/project.git")
            ctx.source_dir.mkdir()
            (ctx.source_dir / "dummy.txt").write_text("hello", encoding="utf-8")

            manager.cleanup(ctx)
            self.assertFalse(ctx.run_dir.exists())
            # Cleaning up twice is harmless.
            manager.cleanup(ctx)


if __name__ == "__main__":
    unittest.main()
