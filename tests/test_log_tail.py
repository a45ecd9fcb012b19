"""Tests for bounded, UTF-8 safe capture-file tail reads."""

import os
import tempfile
import unittest

from bbdownweb.supervisor.errors import SupervisorIOError
from bbdownweb.supervisor.log_tail import read_tail, sanitize_utf8


class SanitizeUtf8Tests(unittest.TestCase):
    def test_valid_text_unchanged(self) -> None:
        self.assertEqual(sanitize_utf8("héllo".encode("utf-8")), "héllo".encode("utf-8"))

    def test_split_fragments_dropped(self) -> None:
        data = "é".encode("utf-8")[1:] + b"ok" + "é".encode("utf-8")[:1]
        self.assertEqual(sanitize_utf8(data), b"ok")

    def test_entirely_invalid_is_empty(self) -> None:
        self.assertEqual(sanitize_utf8(b"\xff\xfe\x80"), b"")


class ReadTailTests(unittest.TestCase):
    """Reads come from the shared write offset without moving it."""

    def setUp(self) -> None:
        self.capture = tempfile.TemporaryFile(mode="w+b")
        self.addCleanup(self.capture.close)
        self.fd = self.capture.fileno()

    def test_empty_file_returns_empty_bytes(self) -> None:
        self.assertEqual(read_tail(self.fd), b"")

    def test_returns_everything_below_window(self) -> None:
        os.write(self.fd, b"line one\nline two\n")
        self.assertEqual(read_tail(self.fd), b"line one\nline two\n")

    def test_repeated_reads_are_identical(self) -> None:
        os.write(self.fd, b"progress 10%\n")
        first = read_tail(self.fd)
        second = read_tail(self.fd)
        self.assertEqual(first, second)
        self.assertEqual(os.lseek(self.fd, 0, os.SEEK_CUR), len(b"progress 10%\n"))

    def test_window_keeps_latest_bytes(self) -> None:
        os.write(self.fd, b"abcdefghijklmnopqrstuvwxyz")
        self.assertEqual(read_tail(self.fd, window=5), b"vwxyz")

    def test_window_never_splits_multibyte_characters(self) -> None:
        os.write(self.fd, "é".encode("utf-8") * 5)
        tail = read_tail(self.fd, window=5)
        self.assertEqual(tail, "éé".encode("utf-8"))
        self.assertLessEqual(len(tail), 5)

    def test_new_writes_show_up_as_suffix(self) -> None:
        os.write(self.fd, b"first\n")
        os.write(self.fd, b"second\n")
        tail = read_tail(self.fd, window=8)
        self.assertTrue(b"first\nsecond\n".endswith(tail))
        self.assertEqual(tail, b"\nsecond\n")

    def test_bad_descriptor_raises_io_error(self) -> None:
        fd = os.open(os.devnull, os.O_RDONLY)
        os.close(fd)
        with self.assertRaises(SupervisorIOError):
            read_tail(fd)


if __name__ == "__main__":
    unittest.main()
