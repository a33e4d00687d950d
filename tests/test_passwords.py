"""Tests for argon2id password hashing."""

from communityhub.service.passwords import PASSWORD_ALGO, PasswordHasher


class TestPasswordHasher:
    def test_hash_round_trip(self, hasher):
        digest = hasher.hash("longenough1")
        assert digest.startswith("$argon2id$")
        assert hasher.verify("longenough1", digest) is True

    def test_wrong_password_is_rejected(self, hasher):
        digest = hasher.hash("longenough1")
        assert hasher.verify("longenough2", digest) is False

    def test_salt_differs_per_call(self, hasher):
        assert hasher.hash("same-password") != hasher.hash("same-password")

    def test_malformed_hash_returns_false(self, hasher):
        assert hasher.verify("anything", "not-a-hash") is False
        assert hasher.verify("anything", "") is False

    def test_default_parameters(self):
        hasher = PasswordHasher()
        digest = hasher.hash("correct horse battery")
        assert "m=65536,t=3,p=4" in digest
        assert hasher.algo == PASSWORD_ALGO == "argon2id"
        assert hasher.needs_rehash(digest) is False

    def test_cheaper_hash_needs_rehash(self, hasher):
        weak = hasher.hash("correct horse battery")
        assert PasswordHasher().needs_rehash(weak) is True
