import tempfile
import threading
import unittest
from pathlib import Path
from unittest.mock import Mock, patch

from streambot.errors import EmptyFileError, FiletypeError, HTTPResponseError
from streambot.media import MediaStore, is_url, normalize_extension


def fake_response(status_code: int = 200, content_type: str = "image/png", chunks=(b"\x89PNG", b"data")):
    response = Mock()
    response.status_code = status_code
    response.reason = "Not Found" if status_code == 404 else "OK"
    response.headers = {"content-type": content_type}
    response.iter_content.return_value = iter(chunks)
    return response


class NormalizeExtensionTest(unittest.TestCase):
    def test_extension_spellings_map_to_jpg(self) -> None:
        for value in ("JPG", ".JPEG", "jpeg", "image/jpeg"):
            self.assertEqual(normalize_extension(value), ".jpg", value)

    def test_content_type_parameters_are_ignored(self) -> None:
        self.assertEqual(normalize_extension("image/png; charset=binary"), ".png")
        self.assertEqual(normalize_extension("Image/GIF"), ".gif")

    def test_unsupported_types_raise(self) -> None:
        for value in (".bmp", "text/html", "", None):
            with self.assertRaises(FiletypeError):
                normalize_extension(value)

    def test_filetype_error_is_a_type_error(self) -> None:
        with self.assertRaises(TypeError):
            normalize_extension(".tiff")

    def test_is_url(self) -> None:
        self.assertTrue(is_url("https://example.com/a.png"))
        self.assertTrue(is_url("HTTP://example.com/a.png"))
        self.assertFalse(is_url("/tmp/a.png"))


class MediaStoreTest(unittest.TestCase):
    def setUp(self) -> None:
        self.tmpdir = tempfile.TemporaryDirectory()
        self.base = Path(self.tmpdir.name)
        self.cleanup = Mock()
        self.store = MediaStore("scratch", base_path=self.base, cleanup=self.cleanup, timeout_s=3)

    def tearDown(self) -> None:
        self.tmpdir.cleanup()

    def write_source(self, name: str, data: bytes = b"image-bytes") -> Path:
        source = self.base / "sources" / name
        source.parent.mkdir(exist_ok=True)
        source.write_bytes(data)
        return source

    def test_directory_prefers_the_given_name(self) -> None:
        self.assertEqual(self.store.directory(), self.base / "scratch")
        self.assertTrue((self.base / "scratch").is_dir())

    def test_empty_existing_directory_is_reused(self) -> None:
        (self.base / "scratch").mkdir()
        self.assertEqual(self.store.directory(), self.base / "scratch")

    def test_occupied_names_get_numeric_suffixes(self) -> None:
        (self.base / "scratch").mkdir()
        (self.base / "scratch" / "keep.txt").write_text("mine")
        (self.base / "scratch_0").mkdir()
        (self.base / "scratch_0" / "keep.txt").write_text("mine")
        (self.base / "scratch_1").write_text("a file, not a directory")

        self.assertEqual(self.store.directory(), self.base / "scratch_2")

    def test_directory_choice_sticks(self) -> None:
        first = self.store.directory()
        self.assertEqual(self.store.directory("elsewhere"), first)

    def test_filenames_are_never_reused(self) -> None:
        self.assertEqual(self.store.next_filename("png"), "1.png")
        self.assertEqual(self.store.next_filename("image/jpeg"), "2.jpg")
        self.assertEqual(self.store.next_filename(".gif"), "3.gif")

    def test_fetch_copies_local_file(self) -> None:
        source = self.write_source("cat.PNG", b"meow")
        filename = self.store.fetch(str(source))

        self.assertEqual(filename, "1.png")
        self.assertEqual(self.store.path(filename).read_bytes(), b"meow")
        self.assertEqual(self.store.files(), ["1.png"])

    def test_fetch_rejects_unsupported_local_file(self) -> None:
        source = self.write_source("notes.txt")
        with self.assertRaises(FiletypeError):
            self.store.fetch(str(source))
        self.assertEqual(self.store.next_filename("png"), "1.png")

    def test_missing_local_file_leaves_nothing_behind(self) -> None:
        with self.assertRaises(OSError):
            self.store.fetch(str(self.base / "missing.png"))
        self.assertEqual(self.store.files(), [])
        self.assertEqual(self.store.pending_deletion, [])

    def test_download_streams_to_disk(self) -> None:
        response = fake_response(content_type="image/gif", chunks=[b"GIF89a", b"", b"rest"])
        with patch("streambot.media.requests.get", return_value=response) as mocked_get:
            filename = self.store.fetch("https://example.com/a.gif")

        mocked_get.assert_called_once_with("https://example.com/a.gif", stream=True, timeout=3)
        response.close.assert_called_once()
        self.assertEqual(filename, "1.gif")
        self.assertEqual(self.store.path(filename).read_bytes(), b"GIF89arest")

    def test_download_http_error(self) -> None:
        response = fake_response(status_code=404)
        with patch("streambot.media.requests.get", return_value=response):
            with self.assertRaises(HTTPResponseError) as ctx:
                self.store.fetch("https://example.com/missing.png")
        self.assertIn("404", str(ctx.exception))
        self.assertIsInstance(ctx.exception, IOError)
        self.assertEqual(self.store.files(), [])
        response.close.assert_called_once()

    def test_download_unsupported_content_type(self) -> None:
        response = fake_response(content_type="text/html")
        with patch("streambot.media.requests.get", return_value=response):
            with self.assertRaises(FiletypeError) as ctx:
                self.store.fetch("https://example.com/page")
        self.assertIn("text/html", str(ctx.exception))
        self.assertEqual(self.store.files(), [])

    def test_empty_download_is_removed(self) -> None:
        response = fake_response(chunks=[])
        with patch("streambot.media.requests.get", return_value=response):
            with self.assertRaises(EmptyFileError):
                self.store.fetch("https://example.com/empty.png")
        self.assertEqual(self.store.files(), [])
        self.assertEqual(self.store.pending_deletion, [])

    def test_edit_only_touches_present_files(self) -> None:
        filename = self.store.fetch(str(self.write_source("a.jpg")))
        edit_fn = Mock()

        self.store.edit([filename, "99.jpg"], edit_fn)

        edit_fn.assert_called_once_with(self.store.path(filename))

    def test_edit_without_function_is_a_no_op(self) -> None:
        filename = self.store.fetch(str(self.write_source("a.jpg")))
        self.store.edit([filename], None)
        self.assertEqual(self.store.files(), [filename])

    def test_enqueue_missing_file_leaves_queue_empty(self) -> None:
        self.store.directory()
        self.assertEqual(self.store.enqueue_delete(["404.png"]), [])
        self.assertEqual(self.store.pending_deletion, [])
        self.cleanup.schedule.assert_not_called()

    def test_enqueue_removes_file_and_empty_directory(self) -> None:
        filename = self.store.fetch(str(self.write_source("a.png")))
        directory = self.store.directory()

        self.assertEqual(self.store.enqueue_delete([filename]), [])
        self.assertFalse(directory.exists())

        # The next fetch recreates the same directory.
        second = self.store.fetch(str(self.write_source("b.png")))
        self.assertEqual(second, "2.png")
        self.assertEqual(self.store.directory(), directory)

    def test_only_queued_files_are_deleted(self) -> None:
        keep = self.store.fetch(str(self.write_source("a.png")))
        drop = self.store.fetch(str(self.write_source("b.png")))

        self.store.enqueue_delete([drop])

        self.assertEqual(self.store.files(), [keep])

    def test_undeletable_file_is_retried_later(self) -> None:
        filename = self.store.fetch(str(self.write_source("a.png")))

        with patch.object(Path, "unlink", side_effect=PermissionError("in use")):
            remaining = self.store.enqueue_delete([filename])

        self.assertEqual(remaining, [filename])
        self.assertEqual(self.store.pending_deletion, [filename])
        self.cleanup.schedule.assert_called_once_with(self.store.enqueue_delete)

        self.assertEqual(self.store.enqueue_delete(), [])
        self.assertEqual(self.store.files(), [])

    def test_same_name_is_queued_once(self) -> None:
        filename = self.store.fetch(str(self.write_source("a.png")))

        with patch.object(Path, "unlink", side_effect=PermissionError("in use")):
            self.store.enqueue_delete([filename])
            self.store.enqueue_delete([filename, filename])

        self.assertEqual(self.store.pending_deletion, [filename])

    def run_in_threads(self, target, count: int = 8) -> None:
        threads = [threading.Thread(target=target, args=(index,)) for index in range(count)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

    def test_concurrent_filenames_are_unique(self) -> None:
        names: list[str] = []
        names_lock = threading.Lock()

        def allocate(_: int) -> None:
            local = [self.store.next_filename("png") for _ in range(50)]
            with names_lock:
                names.extend(local)

        self.run_in_threads(allocate)

        self.assertEqual(len(names), 400)
        self.assertEqual(len(set(names)), 400)

    def test_concurrent_fetches_get_distinct_files(self) -> None:
        sources = [self.write_source(f"{index}.png", f"img{index}".encode()) for index in range(8)]
        fetched: list[str] = []
        fetched_lock = threading.Lock()

        def fetch(index: int) -> None:
            filename = self.store.fetch(str(sources[index]))
            with fetched_lock:
                fetched.append(filename)

        self.run_in_threads(fetch)

        self.assertEqual(len(set(fetched)), 8)
        self.assertEqual(self.store.files(), sorted(fetched))
        contents = {self.store.path(name).read_bytes() for name in fetched}
        self.assertEqual(contents, {f"img{index}".encode() for index in range(8)})

    def test_concurrent_enqueues_lose_nothing(self) -> None:
        filenames = [self.store.fetch(str(self.write_source(f"{index}.png"))) for index in range(8)]

        def enqueue(index: int) -> None:
            self.store.enqueue_delete([filenames[index]])

        with patch.object(Path, "unlink", side_effect=PermissionError("in use")):
            self.run_in_threads(enqueue)

        self.assertEqual(sorted(self.store.pending_deletion), sorted(filenames))
        self.assertEqual(self.store.enqueue_delete(), [])
        self.assertEqual(self.store.files(), [])

    def test_status_reports_directory_and_queue(self) -> None:
        self.assertEqual(self.store.status(), {"directory": None, "files": [], "pending_deletion": []})
        filename = self.store.fetch(str(self.write_source("a.png")))
        status = self.store.status()
        self.assertEqual(status["directory"], str(self.base / "scratch"))
        self.assertEqual(status["files"], [filename])


if __name__ == "__main__":
    unittest.main()
