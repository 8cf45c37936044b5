import pytest

from perpsim.deps.auth import HmacTokenVerifier, IdentityVerifier, issue_token


def test_issued_token_verifies_to_subject():
    verifier = HmacTokenVerifier("k1")
    token = issue_token("did:privy:abc.123", verifier)
    assert verifier.verify(token) == "did:privy:abc.123"


def test_tampered_or_foreign_tokens_are_rejected():
    verifier = HmacTokenVerifier("k1")
    token = issue_token("alice", verifier)

    assert verifier.verify(token.replace("alice", "mallory")) is None
    assert HmacTokenVerifier("k2").verify(token) is None
    assert verifier.verify("no-signature") is None
    assert verifier.verify(".deadbeef") is None


def test_missing_secret_rejects_everything():
    assert HmacTokenVerifier("").verify("alice.00") is None


def test_verifier_interface_requires_verify():
    with pytest.raises(TypeError):
        IdentityVerifier()

    class Fixed(IdentityVerifier):
        def verify(self, token):
            return "fixed"

    assert Fixed().verify("anything") == "fixed"
