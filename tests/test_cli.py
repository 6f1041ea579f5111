"""
ESG Reporting — CLI Tests

Each command runs in-process against the baseline fixture.
"""

import io
import json
import logging
import os
import sys
import unittest
from contextlib import redirect_stderr, redirect_stdout
from unittest.mock import patch

_base = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if _base not in sys.path:
    sys.path.insert(0, _base)

from cycles.cli import main


def run_cli(*argv, env_vars=None):
    out, err = io.StringIO(), io.StringIO()
    env = {k: v for k, v in os.environ.items() if not k.startswith("ESG_")}
    env.update(env_vars or {})
    with patch.dict(os.environ, env, clear=True), redirect_stdout(out), redirect_stderr(err):
        main(list(argv))
    return out.getvalue(), err.getvalue()


class TestDemo(unittest.TestCase):

    def test_demo_completes_cycle(self):
        out, err = run_cli("demo")
        self.assertIn("DEMO: cycle-2026-02", err)
        self.assertIn("verify #1: verification_failed=True new_exceptions=2", err)
        self.assertIn("verify #2: status=completed", err)
        self.assertIn("status:        completed", out)
        self.assertIn("#2:", out)
        self.assertIn("Verified UL 360 Upload", out)

    def test_demo_json(self):
        out, _ = run_cli("demo", "--json")
        payload = json.loads(out)
        self.assertEqual(payload["cycle"]["id"], "cycle-2026-02")
        self.assertEqual(payload["cycle"]["status"], "completed")
        self.assertEqual(payload["cycle"]["verification_attempts"], 2)
        actions = [e["action"] for e in payload["activity"]]
        self.assertEqual(actions[0], "Verified UL 360 Upload")
        self.assertEqual(actions[-1], "Started Reporting Cycle")

    def test_demo_on_non_scheduled_cycle_fails(self):
        with self.assertRaises(SystemExit) as cm:
            run_cli("demo", "--cycle", "cycle-2026-01")
        self.assertEqual(cm.exception.code, 1)


class TestQueries(unittest.TestCase):

    def test_cycles(self):
        out, _ = run_cli("cycles")
        self.assertIn("Reporting Cycles (3)", out)
        self.assertIn("cycle-2026-01", out)

    def test_cycles_json(self):
        out, _ = run_cli("cycles", "--json")
        ids = [c["id"] for c in json.loads(out)]
        self.assertEqual(ids, ["cycle-2025-12", "cycle-2026-01", "cycle-2026-02"])

    def test_exceptions(self):
        out, _ = run_cli("exceptions", "cycle-2026-01", "--open")
        self.assertIn("exc-registry-demo", out)
        self.assertIn("date_range_invalid", out)

    def test_exceptions_json(self):
        out, _ = run_cli("exceptions", "cycle-2026-01", "--json")
        items = json.loads(out)
        self.assertIn("exc-unit-mismatch", [i["id"] for i in items])

    def test_exceptions_unknown_cycle(self):
        with self.assertRaises(SystemExit) as cm:
            run_cli("exceptions", "cycle-2099-01")
        self.assertEqual(cm.exception.code, 1)

    def test_log_empty_on_fresh_state(self):
        out, _ = run_cli("log", "--json")
        self.assertEqual(json.loads(out), [])

    def test_no_command(self):
        with self.assertRaises(SystemExit):
            run_cli()


class TestLogLevel(unittest.TestCase):

    def setUp(self):
        root = logging.getLogger("esg_reporting")
        self.addCleanup(root.setLevel, root.level)

    def test_default_comes_from_config(self):
        run_cli("cycles")
        self.assertEqual(logging.getLogger("esg_reporting").level, logging.WARNING)

    def test_config_key_sets_level(self):
        run_cli("cycles", env_vars={"ESG_LOGGING__LEVEL": "INFO"})
        self.assertEqual(logging.getLogger("esg_reporting").level, logging.INFO)

    def test_flag_overrides_config(self):
        run_cli("--log-level", "ERROR", "cycles", env_vars={"ESG_LOGGING__LEVEL": "INFO"})
        self.assertEqual(logging.getLogger("esg_reporting").level, logging.ERROR)


if __name__ == "__main__":
    unittest.main()
