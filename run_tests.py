import sys
import unittest

if __name__ == "__main__":
    # Collect every tests/test_*.py module
    suite = unittest.defaultTestLoader.discover("tests", pattern="test_*.py", top_level_dir=".")

    runner = unittest.TextTestRunner(verbosity=2)
    result = runner.run(suite)
    sys.exit(0 if result.wasSuccessful() else 1)
