import os
import sys

# Ensure the package is importable when running `pytest` from the repo root
BASE_DIR = os.path.dirname(__file__)
if BASE_DIR not in sys.path:
    sys.path.insert(0, BASE_DIR)
