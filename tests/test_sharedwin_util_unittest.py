import os
import json
import unittest
import tempfile
from pathlib import Path
from unittest import mock

import numpy as np

from sharedwin import sharedwin_util as swu

class TestElementTypes(unittest.TestCase):
    def test_supported_set(self):
        names = [d.name for d in swu.SUPPORTED_DTYPES]
        self.assertEqual(names, ["int8", "int16", "int32", "int64",
                                 "float32", "float64", "complex64", "complex128"])

    def test_resolve_accepts_aliases(self):
        self.assertEqual(swu.resolve_dtype("f8"), np.dtype(np.float64))
        self.assertEqual(swu.resolve_dtype(np.dtype("complex64")), np.dtype(np.complex64))
        self.assertEqual(swu.resolve_dtype(np.int16), np.dtype(np.int16))

    def test_resolve_rejects_outside_set(self):
        for bad in (np.uint32, np.bool_, np.float16, ">i4" if np.little_endian else "<i4"):
            with self.assertRaises(TypeError):
                swu.resolve_dtype(bad)

    def test_displacement_unit_is_itemsize(self):
        for d in swu.SUPPORTED_DTYPES:
            self.assertEqual(swu.displacement_unit(d), d.itemsize)

class TestLocalLength(unittest.TestCase):
    def test_default_lead_owns_everything(self):
        self.assertEqual(swu.resolve_local_length(400, None, is_lead=True), 400)
        self.assertEqual(swu.resolve_local_length(400, None, is_lead=False), 0)

    def test_explicit_length_wins(self):
        self.assertEqual(swu.resolve_local_length(400, 100, is_lead=True), 100)
        self.assertEqual(swu.resolve_local_length(400, 100, is_lead=False), 100)
        self.assertEqual(swu.resolve_local_length(0, 0, is_lead=True), 0)

    def test_negative_lengths(self):
        with self.assertRaises(ValueError):
            swu.resolve_local_length(-1, None, is_lead=True)
        with self.assertRaises(ValueError):
            swu.resolve_local_length(4, -1, is_lead=False)

class TestConfig(unittest.TestCase):
    def test_packaged_defaults(self):
        self.assertEqual(swu.default_config["on_error"], "abort")
        self.assertEqual(swu.default_config["lead_rank"], 0)

    def test_env_override(self):
        with mock.patch.dict(os.environ, {"SHAREDWIN_ON_ERROR": "raise"}):
            self.assertEqual(swu.get_config("on_error"), "raise")
        with mock.patch.dict(os.environ, {"SHAREDWIN_ON_ERROR": ""}):
            self.assertEqual(swu.get_config("on_error"), "abort")

    def test_unknown_key(self):
        with self.assertRaises(KeyError):
            swu.get_config("nope")

    def test_load_json_config(self):
        with tempfile.TemporaryDirectory() as tmp:
            good = Path(tmp) / "cfg.json"
            good.write_text(json.dumps({"on_error": "raise"}))
            self.assertEqual(swu.load_json_config(good), {"on_error": "raise"})

            bad = Path(tmp) / "list.json"
            bad.write_text("[1, 2]")
            with self.assertRaises(ValueError):
                swu.load_json_config(bad)

if __name__ == "__main__":
    unittest.main()
