"""
Tests for the shared logging setup.
"""

import logging
import os
import sys
import tempfile
import unittest

# Add parent to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from common.logging_config import setup_logging


class TestSetupLogging(unittest.TestCase):

    def setUp(self):
        root = logging.getLogger()
        self.saved_handlers = list(root.handlers)
        self.saved_level = root.level
        self.saved_library_level = logging.getLogger('websockets').level

    def tearDown(self):
        root = logging.getLogger()
        for handler in root.handlers:
            handler.close()
        root.handlers[:] = self.saved_handlers
        root.setLevel(self.saved_level)
        logging.getLogger('websockets').setLevel(self.saved_library_level)

    def test_role_prefix_and_level(self):
        root = setup_logging("fire_monitor", level="debug")

        self.assertEqual(root.level, logging.DEBUG)
        self.assertEqual(len(root.handlers), 1)
        self.assertIn("[fire_monitor]", root.handlers[0].formatter._fmt)

    def test_repeated_setup_does_not_duplicate_handlers(self):
        setup_logging("fire_monitor")
        root = setup_logging("fire_monitor")
        self.assertEqual(len(root.handlers), 1)

    def test_library_loggers_capped(self):
        setup_logging("fire_monitor", level="DEBUG")
        self.assertEqual(logging.getLogger('websockets').level, logging.WARNING)

    def test_log_file(self):
        with tempfile.TemporaryDirectory() as tmp:
            path = os.path.join(tmp, "monitor.log")
            root = setup_logging("fire_monitor", log_file=path)
            logging.getLogger("monitor.test").info("hello")
            for handler in root.handlers:
                handler.flush()

            with open(path) as f:
                self.assertIn("hello", f.read())

            # Release the file before the directory is removed
            for handler in root.handlers:
                handler.close()
            root.handlers.clear()


if __name__ == '__main__':
    unittest.main()
