"""Tests for ui.logging_setup."""

import io
import logging
import unittest
from contextlib import redirect_stderr, redirect_stdout

from rich.logging import RichHandler

from ui.logging_setup import configure_logging


class TestConfigureLogging(unittest.TestCase):
    def setUp(self):
        root = logging.getLogger()
        self._saved = (list(root.handlers), root.level)

    def tearDown(self):
        root = logging.getLogger()
        for handler in list(root.handlers):
            root.removeHandler(handler)
        handlers, level = self._saved
        for handler in handlers:
            root.addHandler(handler)
        root.setLevel(level)

    def test_single_rich_handler(self):
        configure_logging("DEBUG")
        configure_logging("INFO")
        root = logging.getLogger()
        self.assertEqual(len(root.handlers), 1)
        self.assertIsInstance(root.handlers[0], RichHandler)
        self.assertEqual(root.level, logging.INFO)

    def test_unknown_level_falls_back_to_warning(self):
        configure_logging("chatty")
        self.assertEqual(logging.getLogger().level, logging.WARNING)

    def test_records_stay_off_stdout(self):
        configure_logging("WARNING")
        out, err = io.StringIO(), io.StringIO()
        with redirect_stdout(out), redirect_stderr(err):
            logging.getLogger("engine.config").warning("Ignoring unreadable config file")
        self.assertEqual(out.getvalue(), "")
        self.assertIn("Ignoring unreadable config file", err.getvalue())


if __name__ == "__main__":
    unittest.main()
