import unittest

from coincurve import PrivateKey

from didauth.crypto import (
    KeyEncoding,
    decode_signature,
    derive_verification_address,
    keccak256,
    normalize_public_key,
    public_key_from_private,
    recover_address,
    sign_message,
    validate_signature_format,
    verify_signature,
)
from didauth.errors import DIDAuthError, ErrorKind

from fakes import (
    ALICE_PRIVATE_KEY,
    GENERATOR_ADDRESS,
    GENERATOR_PRIVATE_KEY,
    GENERATOR_X,
    GENERATOR_Y,
    MALLORY_PRIVATE_KEY,
)

MESSAGE = "DID Login Challenge\nDID: did:hebeu:7aa029b5-4eb2-4231-9651-1c8ebe39edc0\nTimestamp: 1\nNonce: abc"


def _odd_parity_private_key() -> bytes:
    for scalar in range(1, 64):
        secret = scalar.to_bytes(32, "big")
        if PrivateKey(secret).public_key.format(compressed=True)[0] == 3:
            return secret
    raise AssertionError("no odd-parity key in range")


class TestKeccak(unittest.TestCase):
    def test_empty_input_digest(self) -> None:
        self.assertEqual(
            keccak256(b"").hex(),
            "c5d2460186f7233c927e7db2dcc703c0e500b653ca82273b7bfad8045d85a470",
        )


class TestNormalizePublicKey(unittest.TestCase):
    def test_all_encodings_of_generator_derive_known_address(self) -> None:
        encodings = {
            GENERATOR_X: KeyEncoding.RAW_NO_PREFIX,
            "02" + GENERATOR_X: KeyEncoding.COMPRESSED,
            GENERATOR_X + GENERATOR_Y: KeyEncoding.UNCOMPRESSED,
            "04" + GENERATOR_X + GENERATOR_Y: KeyEncoding.UNCOMPRESSED,
            "0x" + (GENERATOR_X + GENERATOR_Y).upper(): KeyEncoding.UNCOMPRESSED,
        }
        for raw, expected in encodings.items():
            with self.subTest(raw=raw[:12]):
                key = normalize_public_key(raw)
                self.assertIs(key.encoding, expected)
                self.assertEqual(derive_verification_address(key), GENERATOR_ADDRESS)

    def test_raw_key_is_flagged_as_parity_assumption(self) -> None:
        self.assertTrue(normalize_public_key(GENERATOR_X).parity_assumed)
        self.assertFalse(normalize_public_key("02" + GENERATOR_X).parity_assumed)
        self.assertEqual(normalize_public_key(GENERATOR_X).sec1[0], 2)

    def test_bytes_input_is_accepted(self) -> None:
        key = normalize_public_key(bytes.fromhex("02" + GENERATOR_X))
        self.assertIs(key.encoding, KeyEncoding.COMPRESSED)

    def test_address_derivation_is_stable(self) -> None:
        public_key = public_key_from_private(ALICE_PRIVATE_KEY)
        first = derive_verification_address(public_key)
        for _ in range(5):
            self.assertEqual(derive_verification_address(public_key), first)
        compressed = public_key_from_private(ALICE_PRIVATE_KEY, KeyEncoding.COMPRESSED)
        self.assertEqual(derive_verification_address(compressed), first)

    def test_helper_matches_known_generator_address(self) -> None:
        self.assertEqual(public_key_from_private(GENERATOR_PRIVATE_KEY), GENERATOR_X + GENERATOR_Y)
        self.assertEqual(
            derive_verification_address(public_key_from_private(GENERATOR_PRIVATE_KEY)),
            GENERATOR_ADDRESS,
        )

    def test_rejects_unsupported_inputs(self) -> None:
        bad_inputs = [
            "",
            GENERATOR_X[:-2],
            GENERATOR_X + "00",
            "05" + GENERATOR_X,
            "05" + GENERATOR_X + GENERATOR_Y,
            "zz" + GENERATOR_X[2:],
            "ab" * 50,
            "ff" * 32,
            "0x" + "a" * 63,
            GENERATOR_X + GENERATOR_Y[:-1],
            "02" + GENERATOR_X + "0",
        ]
        for raw in bad_inputs:
            with self.subTest(raw=raw[:12]):
                with self.assertRaises(DIDAuthError) as ctx:
                    normalize_public_key(raw)
                self.assertIs(ctx.exception.kind, ErrorKind.INVALID_PUBLIC_KEY_FORMAT)


class TestSignatures(unittest.TestCase):
    def test_signature_format(self) -> None:
        signature = sign_message(MESSAGE, ALICE_PRIVATE_KEY)
        self.assertTrue(signature.startswith("0x"))
        self.assertEqual(len(signature), 132)
        self.assertTrue(validate_signature_format(signature))
        self.assertTrue(validate_signature_format(signature[2:]))
        self.assertFalse(validate_signature_format(signature[:-2]))
        self.assertFalse(validate_signature_format(signature + "\n"))
        self.assertFalse(validate_signature_format("0x" + "g" * 130))
        self.assertIn(bytes.fromhex(signature[2:])[64], (27, 28))

    def test_round_trip_for_every_key_encoding(self) -> None:
        signature = sign_message(MESSAGE, ALICE_PRIVATE_KEY)
        for encoding in (KeyEncoding.UNCOMPRESSED, KeyEncoding.COMPRESSED):
            public_key = public_key_from_private(ALICE_PRIVATE_KEY, encoding)
            with self.subTest(encoding=encoding):
                self.assertTrue(verify_signature(MESSAGE, signature, public_key))
                self.assertTrue(verify_signature(MESSAGE, signature, "0x04" + public_key_from_private(ALICE_PRIVATE_KEY)))

    def test_recovers_signer_address(self) -> None:
        signature = sign_message(MESSAGE, GENERATOR_PRIVATE_KEY)
        self.assertEqual(recover_address(MESSAGE, signature), GENERATOR_ADDRESS)

    def test_wrong_key_fails(self) -> None:
        signature = sign_message(MESSAGE, MALLORY_PRIVATE_KEY)
        self.assertFalse(verify_signature(MESSAGE, signature, public_key_from_private(ALICE_PRIVATE_KEY)))

    def test_tampered_message_fails(self) -> None:
        signature = sign_message(MESSAGE, ALICE_PRIVATE_KEY)
        public_key = public_key_from_private(ALICE_PRIVATE_KEY)
        self.assertFalse(verify_signature(MESSAGE + " ", signature, public_key))

    def test_zero_based_recovery_id_is_accepted(self) -> None:
        raw = bytearray(decode_signature(sign_message(MESSAGE, ALICE_PRIVATE_KEY)))
        raw[64] -= 27
        public_key = public_key_from_private(ALICE_PRIVATE_KEY)
        self.assertTrue(verify_signature(MESSAGE, raw.hex(), public_key))

    def test_undecodable_signatures_return_false(self) -> None:
        public_key = public_key_from_private(ALICE_PRIVATE_KEY)
        raw = bytearray(decode_signature(sign_message(MESSAGE, ALICE_PRIVATE_KEY)))
        raw[64] = 5
        self.assertFalse(verify_signature(MESSAGE, raw.hex(), public_key))
        self.assertFalse(verify_signature(MESSAGE, "00" * 64 + "1b", public_key))

    def test_malformed_signature_fails_fast(self) -> None:
        with self.assertRaises(DIDAuthError) as ctx:
            verify_signature(MESSAGE, "0x1234", public_key_from_private(ALICE_PRIVATE_KEY))
        self.assertIs(ctx.exception.kind, ErrorKind.INVALID_SIGNATURE_FORMAT)

    def test_malformed_key_fails_fast(self) -> None:
        signature = sign_message(MESSAGE, ALICE_PRIVATE_KEY)
        with self.assertRaises(DIDAuthError) as ctx:
            verify_signature(MESSAGE, signature, "abcd")
        self.assertIs(ctx.exception.kind, ErrorKind.INVALID_PUBLIC_KEY_FORMAT)

    def test_odd_parity_key_without_prefix_verifies_against_wrong_point(self) -> None:
        secret = _odd_parity_private_key()
        signature = sign_message(MESSAGE, secret)
        raw_key = public_key_from_private(secret, KeyEncoding.RAW_NO_PREFIX)
        self.assertEqual(len(raw_key), 64)
        self.assertTrue(normalize_public_key(raw_key).parity_assumed)
        self.assertFalse(verify_signature(MESSAGE, signature, raw_key))
        self.assertTrue(verify_signature(MESSAGE, signature, public_key_from_private(secret, KeyEncoding.COMPRESSED)))


if __name__ == "__main__":
    unittest.main()
