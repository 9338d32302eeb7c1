import random
import unittest

from blockcipher import ConfigurationError, OracleError
from ecboracle import (ADMIN_TOKEN, COMMENT_PREFIX, SECRET_SUFFIX, Aligned_Oracle, CBC_Bitflip_Oracle,
                       CBC_Oracle, ECB_Oracle, Encryption_Oracle, Random_Mode_Oracle, cbc_bitflip,
                       crack_ecb, crack_ecb_oracle, detect_ecb, find_block_size, find_prefix_length,
                       guess_mode, query, random_cbc_oracle, random_ecb_oracle, secret_length)


class TestDetection(unittest.TestCase):
    def setUp(self):
        self.rng = random.Random(1337)

    def test_detect_ecb(self):
        for _ in range(10):
            self.assertEqual(detect_ecb(random_ecb_oracle(self.rng)), (True, 16))

    def test_detect_ecb_with_prefix(self):
        for _ in range(10):
            self.assertEqual(detect_ecb(random_ecb_oracle(self.rng, with_prefix=True)), (True, 16))

    def test_detect_cbc(self):
        for _ in range(10):
            self.assertEqual(detect_ecb(random_cbc_oracle(self.rng)), (False, 0))

    def test_find_block_size(self):
        self.assertEqual(find_block_size(random_ecb_oracle(self.rng)), 16)
        self.assertEqual(find_block_size(random_cbc_oracle(self.rng)), 16)

    def test_guess_mode(self):
        oracle = Random_Mode_Oracle(self.rng)
        modes = set()
        for _ in range(30):
            self.assertEqual(guess_mode(oracle), oracle.last_mode)
            modes.add(oracle.last_mode)
        self.assertEqual(modes, {'ECB', 'CBC'})

    def test_find_prefix_length(self):
        key = self.rng.randbytes(16)
        for length in (0, 1, 9, 15, 16, 17, 30, 32):
            oracle = ECB_Oracle(key, SECRET_SUFFIX, self.rng.randbytes(length))
            self.assertEqual(find_prefix_length(oracle), length)

    def test_secret_length(self):
        key = self.rng.randbytes(16)
        for length in (0, 1, 15, 16, 17):
            self.assertEqual(secret_length(ECB_Oracle(key, b's' * length)), length)

    def test_aligned_oracle_hides_prefix(self):
        key = self.rng.randbytes(16)
        plain = ECB_Oracle(key, SECRET_SUFFIX)
        aligned = Aligned_Oracle(ECB_Oracle(key, SECRET_SUFFIX, b'random prefix'), 13)
        for msg in (b'', b'A', b'attacker controlled bytes'):
            self.assertEqual(aligned(msg), plain(msg))


class TestCrackECB(unittest.TestCase):
    def setUp(self):
        self.rng = random.Random(12)

    def test_crack_ecb(self):
        oracle = random_ecb_oracle(self.rng)
        cracked = crack_ecb(oracle, len(oracle(b'')))
        self.assertEqual(cracked[:len(SECRET_SUFFIX)], SECRET_SUFFIX)
        self.assertLessEqual(len(cracked), len(SECRET_SUFFIX) + 1)

    def test_crack_ecb_oracle(self):
        self.assertEqual(crack_ecb_oracle(random_ecb_oracle(self.rng)), SECRET_SUFFIX)

    def test_crack_ecb_oracle_with_prefix(self):
        for _ in range(2):
            oracle = random_ecb_oracle(self.rng, with_prefix=True)
            self.assertEqual(crack_ecb_oracle(oracle), SECRET_SUFFIX)

    def test_secret_byte_ff(self):
        oracle = ECB_Oracle(self.rng.randbytes(16), b'abc\xffdef')
        self.assertEqual(crack_ecb_oracle(oracle), b'abc')
        self.assertEqual(crack_ecb_oracle(oracle, trial_bytes=range(256)), b'abc\xffdef')

    def test_trial_bytes_iterator(self):
        oracle = ECB_Oracle(bytes(range(16)), b'hello world')
        self.assertEqual(crack_ecb_oracle(oracle, trial_bytes=iter(range(256))), b'hello world')
        cracked = crack_ecb(oracle, len(oracle(b'')), trial_bytes=(b for b in range(256)))
        self.assertEqual(cracked[:11], b'hello world')

    def test_binary_secret(self):
        secret = bytes(range(0, 255, 7))
        oracle = random_ecb_oracle(self.rng, secret=secret, with_prefix=True)
        self.assertEqual(crack_ecb_oracle(oracle), secret)

    def test_crack_cbc_oracle_fails(self):
        with self.assertRaises(RuntimeError):
            crack_ecb_oracle(random_cbc_oracle(self.rng))

    def test_bad_max_len(self):
        with self.assertRaises(ValueError):
            crack_ecb(random_ecb_oracle(self.rng), 0)


class TestCBCBitflip(unittest.TestCase):
    def setUp(self):
        self.rng = random.Random(16)
        self.oracle = CBC_Bitflip_Oracle(self.rng.randbytes(16), self.rng.randbytes(16))

    def test_sanitize(self):
        self.assertEqual(CBC_Bitflip_Oracle.sanitize(b'fo==obar&&boo=baz;hello'), b'foobar&&boobazhello')
        self.assertFalse(self.oracle.is_admin(self.oracle.encrypt(ADMIN_TOKEN)))

    def test_round_trip(self):
        plaintext = self.oracle.decrypt(self.oracle.encrypt(b'hello'))
        self.assertEqual(plaintext, COMMENT_PREFIX + b'hello;comment2=%20like%20a%20pound%20of%20bacon')

    def test_bitflip(self):
        forged = cbc_bitflip(self.oracle, len(COMMENT_PREFIX))
        self.assertTrue(self.oracle.is_admin(forged))
        self.assertIn(b';comment2=', self.oracle.decrypt(forged))

    def test_bitflip_unaligned_prefix(self):
        oracle = CBC_Bitflip_Oracle(self.rng.randbytes(16), self.rng.randbytes(16), prefix=b'userdata=')
        self.assertTrue(oracle.is_admin(cbc_bitflip(oracle, 9)))

    def test_target_too_long(self):
        with self.assertRaises(ValueError):
            cbc_bitflip(self.oracle, len(COMMENT_PREFIX), target=b';admin=true;' * 2)


class TestOracleErrors(unittest.TestCase):
    def test_oracle_base_is_abstract(self):
        with self.assertRaises(TypeError):
            Encryption_Oracle()

    def test_bad_key(self):
        with self.assertRaises(ConfigurationError):
            ECB_Oracle(b'short', SECRET_SUFFIX)
        with self.assertRaises(ConfigurationError):
            CBC_Oracle(bytes(16), b'short', SECRET_SUFFIX)

    def test_query_wraps_failures(self):
        oracle = ECB_Oracle(bytes(16), SECRET_SUFFIX)
        with self.assertRaises(OracleError):
            query(oracle, 'not bytes')

        def broken(msg):
            raise ValueError('oracle is down')

        with self.assertRaises(OracleError):
            crack_ecb(broken, 16)
        with self.assertRaises(OracleError):
            detect_ecb(broken)

    def test_oracle_error_aborts_crack(self):
        oracle = ECB_Oracle(bytes(16), SECRET_SUFFIX)
        calls = []

        def flaky(msg):
            calls.append(msg)
            if len(calls) > 50:
                raise OracleError('rate limited')
            return oracle(msg)

        with self.assertRaises(OracleError):
            crack_ecb(flaky, len(oracle(b'')))
        self.assertEqual(len(calls), 51)


if __name__ == '__main__':
    unittest.main()
