"""Tests for the bcrypt credential codec."""

from __future__ import annotations

import sys
import unittest
from pathlib import Path


ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from user_service.security import DEFAULT_BCRYPT_ROUNDS, PasswordHasher


class PasswordHashingTests(unittest.TestCase):
    @classmethod
    def setUpClass(cls) -> None:
        cls.hasher = PasswordHasher(rounds=4)

    def test_hash_then_verify_round_trip(self) -> None:
        hashed = self.hasher.hash("supersecurepassword")
        self.assertNotEqual(hashed, "supersecurepassword")
        self.assertTrue(self.hasher.verify("supersecurepassword", hashed))
        self.assertFalse(self.hasher.verify("incorrect", hashed))

    def test_same_plaintext_hashes_differently(self) -> None:
        first = self.hasher.hash("repeatable")
        second = self.hasher.hash("repeatable")
        self.assertNotEqual(first, second)
        self.assertTrue(self.hasher.verify("repeatable", first))
        self.assertTrue(self.hasher.verify("repeatable", second))

    def test_malformed_or_missing_hash_does_not_raise(self) -> None:
        self.assertFalse(self.hasher.verify("anything", "not-a-bcrypt-hash"))
        self.assertFalse(self.hasher.verify("anything", ""))
        self.assertFalse(self.hasher.verify("anything", None))

    def test_default_cost_is_ten_rounds(self) -> None:
        hasher = PasswordHasher()
        self.assertEqual(hasher.rounds, DEFAULT_BCRYPT_ROUNDS)
        hashed = hasher.hash("cost-check")
        self.assertTrue(hashed.startswith("$2b$10$"), hashed)

    def test_rejects_cost_below_bcrypt_minimum(self) -> None:
        with self.assertRaises(ValueError):
            PasswordHasher(rounds=3)

    def test_dummy_verify_completes(self) -> None:
        self.hasher.dummy_verify()


if __name__ == "__main__":  # pragma: no cover
    unittest.main()
