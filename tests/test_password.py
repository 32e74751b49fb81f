"""Password hashing tests."""

from taskgate.auth.password import hash_password, verify_password


def test_digest_is_not_plaintext_and_verifies():
    digest = hash_password("pw1", rounds=4)
    assert digest != "pw1"
    assert digest.startswith("$2")
    assert verify_password("pw1", digest)
    assert not verify_password("pw2", digest)


def test_same_password_hashes_differently():
    assert hash_password("pw1", rounds=4) != hash_password("pw1", rounds=4)


def test_malformed_digest_never_matches():
    assert not verify_password("pw1", "not-a-bcrypt-hash")
    assert not verify_password("pw1", "")
