"""Tests for the JWE engine."""

import itertools
import json

import pytest

from webjose.config import get_settings
from webjose.core.algorithms import Algorithm, AlgorithmFamily, Encryption, KeyUse
from webjose.core.codec import b64url_decode, b64url_encode, json_loads
from webjose.core.errors import InvalidJWEError, UnsupportedAlgorithmError, ValidationError
from webjose.core.jose_header import register_extension
from webjose.core.jwe import EncryptedMessage, JweBuilder
from webjose.core.web_key import WebKey

KEY_MANAGEMENT_ALGORITHMS = [a for a in Algorithm if a.use == KeyUse.ENCRYPT]
ALGORITHM_PAIRS = list(itertools.product(KEY_MANAGEMENT_ALGORITHMS, Encryption))
PAYLOAD = b"The true sign of intelligence is not knowledge but imagination."


def recipient_key(algorithm: Algorithm, encryption: Encryption, rsa_key: WebKey, ec_key: WebKey) -> WebKey:
    """A key that fits ``algorithm``."""
    family = algorithm.family
    if family == AlgorithmFamily.RSA_ENCRYPTION:
        return rsa_key
    if family in (AlgorithmFamily.ECDH_ES, AlgorithmFamily.ECDH_ES_KEY_WRAP):
        return ec_key
    if family == AlgorithmFamily.DIRECT:
        return WebKey.ephemeral(encryption)
    return WebKey.ephemeral(algorithm)


def encrypt(encryption, algorithm, key, payload=PAYLOAD):
    builder = JweBuilder(encryption)
    builder.add_recipient(algorithm).key(key)
    return builder.encrypt(payload)


class TestRoundTrip:
    """Tests for encrypting and decrypting with each algorithm."""

    @pytest.mark.parametrize(
        "algorithm,encryption", ALGORITHM_PAIRS, ids=[f"{a.value}-{e.value}" for a, e in ALGORITHM_PAIRS]
    )
    def test_round_trip(self, algorithm, encryption, rsa_key, ec_key):
        """Test that every key management and content encryption pair round-trips."""
        key = recipient_key(algorithm, encryption, rsa_key, ec_key)

        message = encrypt(encryption, algorithm, key)
        parsed = EncryptedMessage.parse(message.to_json())

        assert len(message.iv) == encryption.iv_size
        assert parsed.recipients[0].header.algorithm == algorithm
        assert parsed.encryption == encryption
        assert parsed.decrypt(key) == PAYLOAD

    def test_text_payload(self):
        """Test that str payloads are encrypted as UTF-8."""
        key = WebKey.ephemeral(Algorithm.A256KW)

        message = encrypt(Encryption.A128CBC_HS256, Algorithm.A256KW, key, "héllo")

        assert message.decrypt_text(key) == "héllo"

    def test_public_key_cannot_decrypt(self, rsa_key):
        """Test that a public key cannot decrypt."""
        message = encrypt(Encryption.A128GCM, Algorithm.RSA_OAEP_256, rsa_key)

        with pytest.raises(InvalidJWEError):
            message.decrypt(rsa_key.well_known())

    def test_signature_algorithm_rejected(self):
        """Test that signature algorithms cannot add recipients."""
        with pytest.raises(UnsupportedAlgorithmError):
            JweBuilder(Encryption.A128GCM).add_recipient(Algorithm.HS256)

    def test_encrypt_once(self):
        """Test that a builder encrypts only once."""
        key = WebKey.ephemeral(Algorithm.A128KW)
        builder = JweBuilder(Encryption.A128GCM)
        builder.add_recipient(Algorithm.A128KW).key(key)
        builder.encrypt(PAYLOAD)

        with pytest.raises(ValidationError):
            builder.encrypt(PAYLOAD)
        with pytest.raises(ValidationError):
            builder.add_recipient(Algorithm.A128KW)

    def test_no_recipients(self):
        """Test that encrypting needs at least one recipient."""
        with pytest.raises(ValidationError):
            JweBuilder(Encryption.A128GCM).encrypt(PAYLOAD)

    def test_missing_key(self):
        """Test that a recipient without a key is rejected."""
        builder = JweBuilder(Encryption.A128GCM)
        builder.add_recipient(Algorithm.A128KW).key_id("k1")

        with pytest.raises(ValidationError):
            builder.encrypt(PAYLOAD)


class TestHeaders:
    """Tests for where parameters end up."""

    def test_single_recipient_layout(self):
        """Test that with one recipient only enc is protected and the rest is shared."""
        key = WebKey.ephemeral(Algorithm.A128KW, key_id="kw-1")

        data = encrypt(Encryption.A128GCM, Algorithm.A128KW, key).to_dict()

        assert json_loads(b64url_decode(data["protected"])) == {"enc": "A128GCM"}
        assert data["unprotected"] == {"alg": "A128KW", "kid": "kw-1"}
        assert "header" not in data
        assert "recipients" not in data

    def test_protect(self):
        """Test that protect moves named parameters into the protected header."""
        key = WebKey.ephemeral(Algorithm.A128KW, key_id="kw-1")
        builder = JweBuilder(Encryption.A128GCM).protect("alg", "kid")
        builder.add_recipient(Algorithm.A128KW).key(key)

        message = builder.encrypt(PAYLOAD)

        assert message.protected_json == {"alg": "A128KW", "enc": "A128GCM", "kid": "kw-1"}
        assert message.unprotected is None
        assert message.decrypt(key) == PAYLOAD

    def test_protected_parameter_must_agree(self):
        """Test that a protected kid differing across recipients is rejected."""
        builder = JweBuilder(Encryption.A128GCM).protect("kid")
        builder.add_recipient(Algorithm.A128KW).key(WebKey.ephemeral(Algorithm.A128KW, key_id="a"))
        builder.add_recipient(Algorithm.A128KW).key(WebKey.ephemeral(Algorithm.A128KW, key_id="b"))

        with pytest.raises(ValidationError):
            builder.encrypt(PAYLOAD)

    def test_gcm_key_wrap_params(self):
        """Test that GCM key wrap records iv and tag, advancing the IV per use."""
        key = WebKey.ephemeral(Algorithm.A256GCMKW)

        first = encrypt(Encryption.A128GCM, Algorithm.A256GCMKW, key).recipients[0].header
        second = encrypt(Encryption.A128GCM, Algorithm.A256GCMKW, key).recipients[0].header

        assert len(first.bytes_param("iv")) == 12
        assert len(first.bytes_param("tag")) == 16
        assert first.bytes_param("iv") != second.bytes_param("iv")
        assert first.bytes_param("iv")[:4] == second.bytes_param("iv")[:4]

    def test_pbes2_defaults(self):
        """Test that PBES2 draws a salt and the configured iteration count."""
        key = WebKey.ephemeral(Algorithm.PBES2_HS256_A128KW)

        header = encrypt(Encryption.A128GCM, Algorithm.PBES2_HS256_A128KW, key).recipients[0].header

        assert len(header.bytes_param("p2s")) == 16
        assert header.iteration_count == get_settings().pbes2_iterations

    def test_pbes2_iterations(self):
        """Test that an explicit p2c is used and survives parsing."""
        key = WebKey.ephemeral(Algorithm.PBES2_HS384_A192KW)
        builder = JweBuilder(Encryption.A192GCM)
        builder.add_recipient(Algorithm.PBES2_HS384_A192KW).key(key).param("p2c", 1000)

        message = EncryptedMessage.parse(builder.encrypt(PAYLOAD).to_json())

        assert message.recipients[0].header.iteration_count == 1000
        assert message.decrypt(key) == PAYLOAD

    def test_pbes2_iteration_limit(self, monkeypatch):
        """Test that an excessive p2c is refused before deriving a key."""
        key = WebKey.ephemeral(Algorithm.PBES2_HS256_A128KW)
        builder = JweBuilder(Encryption.A128GCM)
        builder.add_recipient(Algorithm.PBES2_HS256_A128KW).key(key).param("p2c", 1000)
        message = builder.encrypt(PAYLOAD)

        monkeypatch.setattr(get_settings(), "pbes2_max_iterations", 500)

        with pytest.raises(InvalidJWEError):
            message.decrypt(key)

    def test_ecdh_party_info(self, ec_key):
        """Test that ECDH-ES party info and the ephemeral key are recorded."""
        builder = JweBuilder(Encryption.A128GCM)
        builder.add_recipient(Algorithm.ECDH_ES).key(ec_key).param("apu", b"Alice").param("apv", b"Bob")

        message = builder.encrypt(PAYLOAD)
        header = message.recipients[0].header

        assert header.bytes_param("apu") == b"Alice"
        assert header.bytes_param("apv") == b"Bob"
        assert header.ephemeral_key is not None
        assert header.ephemeral_key.private_key is None
        assert message.recipients[0].encrypted_key == b""
        assert EncryptedMessage.parse(message.to_json()).decrypt(ec_key) == PAYLOAD

    def test_ecdh_party_info_tampered(self, ec_key):
        """Test that altering apv changes the agreed key."""
        builder = JweBuilder(Encryption.A128GCM)
        builder.add_recipient(Algorithm.ECDH_ES).key(ec_key).param("apv", b"Bob")
        data = builder.encrypt(PAYLOAD).to_dict()

        data["unprotected"]["apv"] = b64url_encode(b"Eve")

        with pytest.raises(InvalidJWEError):
            EncryptedMessage.parse(json.dumps(data)).decrypt(ec_key)


class TestMultipleRecipients:
    """Tests for general JSON serialization with several recipients."""

    def test_each_recipient_decrypts(self, rsa_key, ec_key):
        """Test that every recipient can decrypt the shared content."""
        shared = WebKey.ephemeral(Algorithm.A256KW, key_id="kw-1")
        builder = JweBuilder(Encryption.A256GCM)
        builder.add_recipient(Algorithm.RSA_OAEP_256).key(rsa_key)
        builder.add_recipient(Algorithm.A256KW).key(shared)
        builder.add_recipient(Algorithm.ECDH_ES_A128KW).key(ec_key)

        message = EncryptedMessage.parse(builder.encrypt(PAYLOAD).to_json())

        assert len(message.to_dict()["recipients"]) == 3
        for key in (rsa_key, shared, ec_key):
            assert message.decrypt(key) == PAYLOAD

    def test_direct_shares_cek(self):
        """Test that a key wrap recipient protects the CEK fixed by dir."""
        direct = WebKey.ephemeral(Encryption.A128GCM)
        wrap = WebKey.ephemeral(Algorithm.A128KW)
        builder = JweBuilder(Encryption.A128GCM)
        builder.add_recipient(Algorithm.DIRECT).key(direct)
        builder.add_recipient(Algorithm.A128KW).key(wrap)

        message = builder.encrypt(PAYLOAD)

        assert message.recipients[0].encrypted_key == b""
        assert message.decrypt(direct) == PAYLOAD
        assert message.decrypt(wrap) == PAYLOAD

    def test_conflicting_fixed_keys(self):
        """Test that two direct keys cannot share one CEK."""
        builder = JweBuilder(Encryption.A128GCM)
        builder.add_recipient(Algorithm.DIRECT).key(WebKey.ephemeral(Encryption.A128GCM))
        builder.add_recipient(Algorithm.DIRECT).key(WebKey.ephemeral(Encryption.A128GCM))

        with pytest.raises(ValidationError):
            builder.encrypt(PAYLOAD)

    def test_skips_other_key_ids(self):
        """Test that a key with an id only tries recipients naming it."""
        first = WebKey.ephemeral(Algorithm.A128KW, key_id="a")
        second = WebKey.ephemeral(Algorithm.A128KW, key_id="b")
        builder = JweBuilder(Encryption.A128GCM)
        builder.add_recipient(Algorithm.A128KW).key(first)
        builder.add_recipient(Algorithm.A128KW).key(second)
        message = builder.encrypt(PAYLOAD)

        stranger = WebKey.builder().key_id("c").raw_key(first.raw_key).build()

        assert message.decrypt(second) == PAYLOAD
        with pytest.raises(InvalidJWEError):
            message.decrypt(stranger)

    def test_encryption_mismatch(self):
        """Test that a recipient cannot use a different enc."""
        builder = JweBuilder(Encryption.A128GCM)

        with pytest.raises(ValidationError):
            builder.add_recipient(Algorithm.A128KW).encryption(Encryption.A256GCM)

    def test_critical_mismatch(self):
        """Test that recipients must agree on crit."""
        register_extension("exp")
        builder = JweBuilder(Encryption.A128GCM)
        builder.add_recipient(Algorithm.A128KW).key(WebKey.ephemeral(Algorithm.A128KW)).param("exp", 1).crit("exp")
        builder.add_recipient(Algorithm.A128KW).key(WebKey.ephemeral(Algorithm.A128KW))

        with pytest.raises(ValidationError):
            builder.encrypt(PAYLOAD)

    def test_parse_encryption_mismatch(self):
        """Test that recipients disagreeing on enc are rejected on parse."""
        text = json.dumps(
            {
                "recipients": [
                    {"header": {"alg": "A128KW", "enc": "A128GCM"}, "encrypted_key": "AAAA"},
                    {"header": {"alg": "A128KW", "enc": "A256GCM"}, "encrypted_key": "AAAA"},
                ],
                "iv": "AAAA",
                "ciphertext": "AAAA",
                "tag": "AAAA",
            }
        )

        with pytest.raises(ValidationError):
            EncryptedMessage.parse(text)

    def test_parse_mixed_layout(self):
        """Test that header and recipients cannot be mixed."""
        text = json.dumps(
            {
                "header": {"alg": "A128KW", "enc": "A128GCM"},
                "recipients": [{"header": {"alg": "A128KW", "enc": "A128GCM"}}],
                "ciphertext": "AAAA",
            }
        )

        with pytest.raises(ValidationError):
            EncryptedMessage.parse(text)


class TestCompact:
    """Tests for compact serialization."""

    def test_round_trip(self, rsa_key):
        """Test compact encryption and decryption."""
        builder = JweBuilder(Encryption.A128CBC_HS256).compact()
        builder.add_recipient(Algorithm.RSA_OAEP_256).key(rsa_key).content_type("JWT")

        token = builder.encrypt(PAYLOAD).compact()
        message = EncryptedMessage.parse(token)

        assert token.count(".") == 4
        assert message.protected_json == {"alg": "RSA-OAEP-256", "enc": "A128CBC-HS256", "kid": "rsa-1", "cty": "JWT"}
        assert message.decrypt(rsa_key) == PAYLOAD

    def test_tampered_protected_header(self):
        """Test that a compact token with an altered protected header is rejected."""
        key = WebKey.ephemeral(Algorithm.A128KW)
        builder = JweBuilder(Encryption.A128GCM).compact()
        builder.add_recipient(Algorithm.A128KW).key(key)
        segments = builder.encrypt(PAYLOAD).compact().split(".")

        header = json_loads(b64url_decode(segments[0]))
        header["cty"] = "JWT"
        segments[0] = b64url_encode(json.dumps(header).encode())

        with pytest.raises(InvalidJWEError):
            EncryptedMessage.parse(".".join(segments)).decrypt(key)

    def test_aad_not_allowed(self):
        """Test that compact messages cannot carry AAD."""
        builder = JweBuilder(Encryption.A128GCM).compact().aad("extra")
        builder.add_recipient(Algorithm.A128KW).key(WebKey.ephemeral(Algorithm.A128KW))

        with pytest.raises(ValidationError):
            builder.encrypt(PAYLOAD)

    def test_single_recipient(self):
        """Test that compact messages allow one recipient."""
        builder = JweBuilder(Encryption.A128GCM).compact()
        builder.add_recipient(Algorithm.A128KW).key(WebKey.ephemeral(Algorithm.A128KW))

        with pytest.raises(ValidationError):
            builder.add_recipient(Algorithm.A128KW)

    def test_unprotected_blocks_compact(self):
        """Test that a message with shared parameters cannot be compacted."""
        message = encrypt(Encryption.A128GCM, Algorithm.A128KW, WebKey.ephemeral(Algorithm.A128KW))

        with pytest.raises(ValidationError):
            message.compact()

    def test_requires_protected_header(self):
        """Test that a compact token needs a protected header."""
        with pytest.raises(ValidationError):
            EncryptedMessage.parse(".AAAA.AAAA.AAAA.AAAA")

    def test_wrong_segment_count(self):
        """Test that a compact token needs five segments."""
        with pytest.raises(ValidationError):
            EncryptedMessage.parse("a.b.c")


class TestIntegrity:
    """Tests for authentication of ciphertext and AAD."""

    @pytest.fixture
    def key(self):
        return WebKey.ephemeral(Algorithm.A128KW)

    @pytest.fixture
    def message(self, key):
        builder = JweBuilder(Encryption.A128GCM).aad("context")
        builder.add_recipient(Algorithm.A128KW).key(key)
        return builder.encrypt(PAYLOAD)

    def test_aad_round_trip(self, key, message):
        """Test that AAD survives serialization and decryption."""
        parsed = EncryptedMessage.parse(message.to_json())

        assert parsed.aad == b"context"
        assert parsed.decrypt(key) == PAYLOAD

    def test_tampered_ciphertext(self, key, message):
        """Test that altered ciphertext fails decryption."""
        data = message.to_dict()
        ciphertext = bytearray(b64url_decode(data["ciphertext"]))
        ciphertext[0] ^= 1
        data["ciphertext"] = b64url_encode(bytes(ciphertext))

        with pytest.raises(InvalidJWEError):
            EncryptedMessage.parse(json.dumps(data)).decrypt(key)

    def test_tampered_aad(self, key, message):
        """Test that altered AAD fails decryption."""
        data = message.to_dict()
        data["aad"] = b64url_encode(b"other")

        with pytest.raises(InvalidJWEError):
            EncryptedMessage.parse(json.dumps(data)).decrypt(key)

    def test_tampered_protected_header(self, key, message):
        """Test that altering the protected header fails decryption."""
        data = message.to_dict()
        data["protected"] = b64url_encode(json.dumps({"enc": "A128GCM", "cty": "JWT"}).encode())

        with pytest.raises(InvalidJWEError):
            EncryptedMessage.parse(json.dumps(data)).decrypt(key)

    def test_wrong_key(self, message):
        """Test that another key cannot decrypt."""
        with pytest.raises(InvalidJWEError):
            message.decrypt(WebKey.ephemeral(Algorithm.A128KW))


class TestCompression:
    """Tests for zip: DEF."""

    def test_deflate(self):
        """Test that zip DEF compresses before encryption."""
        key = WebKey.ephemeral(Algorithm.A128KW)
        payload = b"a" * 1000
        builder = JweBuilder(Encryption.A128GCM).deflate()
        builder.add_recipient(Algorithm.A128KW).key(key)

        message = EncryptedMessage.parse(builder.encrypt(payload).to_json())

        assert message.deflate
        assert message.protected_json["zip"] == "DEF"
        assert len(message.ciphertext) < len(payload)
        assert message.decrypt(key) == payload

    def test_recipient_deflate(self):
        """Test that zip set on the first recipient applies to the message."""
        key = WebKey.ephemeral(Algorithm.A128KW)
        builder = JweBuilder(Encryption.A128GCM)
        builder.add_recipient(Algorithm.A128KW).key(key).deflate()

        message = builder.encrypt(PAYLOAD)

        assert message.deflate
        assert message.decrypt(key) == PAYLOAD
