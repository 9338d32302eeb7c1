import logging
import random
from abc import ABC, abstractmethod
from base64 import b64decode

from blockcipher import (BLOCK_SIZE, CryptopalsError, OracleError, bytes_xor, cbc_decrypt,
                         cbc_encrypt, check_iv, check_key, ecb_encrypt, pkcs7, pkcs7_unpad)
from blocksimilarity import is_ecb_encrypted

log = logging.getLogger(__name__)

MAX_FILLER = 64
FILLER = b'A'
DETECTION_PLAINTEXT = b'0123456789ABCDEF' * 3 + b'0123456789ABCDE'
# 0xff is never tried, a secret byte 0xff ends extraction early; pass range(256) to include it
TRIAL_BYTES = range(255)

SECRET_SUFFIX = b64decode('''Um9sbGluJyBpbiBteSA1LjAKV2l0aCBteSByYWctdG9wIGRvd24gc28gbXkg
    aGFpciBjYW4gYmxvdwpUaGUgZ2lybGllcyBvbiBzdGFuZGJ5IHdhdmluZyBq
    dXN0IHRvIHNheSBoaQpEaWQgeW91IHN0b3A/IE5vLCBJIGp1c3QgZHJvdmUg
    YnkK''')


def query(oracle, msg:bytes) -> bytes:
    """Ask the oracle for a ciphertext; any failure comes back as OracleError."""
    try:
        return oracle(msg)
    except OracleError:
        raise
    except (CryptopalsError, ValueError, TypeError) as e:
        raise OracleError(f'could not encrypt: {e}') from e


#### oracles ####
class Encryption_Oracle(ABC):
    @abstractmethod
    def encrypt(self, msg:bytes = b'') -> bytes:
        ...

    def __call__(self, msg:bytes = b'') -> bytes:
        return self.encrypt(msg)

class ECB_Oracle(Encryption_Oracle):
    """AES-ECB(prefix || msg || secret, key)"""

    def __init__(self, key:bytes, secret:bytes, prefix:bytes = b''):
        check_key(key)
        self.key = key
        self.secret = secret
        self.prefix = prefix

    def encrypt(self, msg:bytes = b'') -> bytes:
        return ecb_encrypt(pkcs7(self.prefix + msg + self.secret), self.key)

class CBC_Oracle(Encryption_Oracle):
    """AES-CBC(prefix || msg || secret, key, iv)"""

    def __init__(self, key:bytes, iv:bytes, secret:bytes, prefix:bytes = b''):
        check_key(key)
        check_iv(iv)
        self.key = key
        self.iv = iv
        self.secret = secret
        self.prefix = prefix

    def encrypt(self, msg:bytes = b'') -> bytes:
        return cbc_encrypt(pkcs7(self.prefix + msg + self.secret), self.key, self.iv)

class Random_Mode_Oracle(Encryption_Oracle):
    """Encrypts under a fresh key each call, with 5-10 random bytes on either
    side, in ECB half the time and CBC (random IV) the other half.
    """

    def __init__(self, rng:random.Random):
        self.rng = rng
        self.last_mode = None

    def encrypt(self, msg:bytes = b'') -> bytes:
        key = self.rng.randbytes(BLOCK_SIZE)
        before = self.rng.randbytes(self.rng.randint(5, 10))
        after = self.rng.randbytes(self.rng.randint(5, 10))
        plaintext = pkcs7(before + msg + after)

        if self.rng.randint(0, 1):
            self.last_mode = 'ECB'
            return ecb_encrypt(plaintext, key)
        self.last_mode = 'CBC'
        return cbc_encrypt(plaintext, key, self.rng.randbytes(BLOCK_SIZE))

class Aligned_Oracle(Encryption_Oracle):
    """Wraps an oracle with a hidden prefix of known length so it looks prefix-free.

    The prefix is filled out to a block boundary and the blocks covering it are
    dropped from every ciphertext.
    """

    def __init__(self, oracle, prefix_len:int, blocksize:int = BLOCK_SIZE):
        self.oracle = oracle
        self.spacing = -prefix_len % blocksize
        self.skip = prefix_len + self.spacing

    def encrypt(self, msg:bytes = b'') -> bytes:
        return query(self.oracle, FILLER * self.spacing + msg)[self.skip:]

def random_ecb_oracle(rng:random.Random, secret:bytes = SECRET_SUFFIX, with_prefix:bool = False) -> ECB_Oracle:
    key = rng.randbytes(BLOCK_SIZE)
    prefix = rng.randbytes(rng.randint(2, 30)) if with_prefix else b''
    return ECB_Oracle(key, secret, prefix)

def random_cbc_oracle(rng:random.Random, secret:bytes = SECRET_SUFFIX) -> CBC_Oracle:
    key = rng.randbytes(BLOCK_SIZE)
    iv = rng.randbytes(BLOCK_SIZE)
    return CBC_Oracle(key, iv, secret)


#### challenge 11: what is the oracle doing? ####
def guess_mode(oracle, blocksize:int = BLOCK_SIZE) -> str:
    # four blocks of filler leave at least two aligned ones after up to a block of junk
    ciphertext = query(oracle, FILLER * (blocksize * 4))
    return 'ECB' if is_ecb_encrypted(ciphertext, blocksize) else 'CBC'

def find_block_size(oracle) -> int:
    initial_length = len(query(oracle, b''))
    for i in range(1, MAX_FILLER + 1):
        new_length = len(query(oracle, FILLER * i))
        if new_length > initial_length:
            return new_length - initial_length
    raise RuntimeError(f'ciphertext length did not change within {MAX_FILLER} bytes of filler')

def _tails_match(ciphertext:bytes, new_ciphertext:bytes, length:int) -> bool:
    if len(ciphertext) < length or len(new_ciphertext) < length:
        return False
    return ciphertext[-length:] == new_ciphertext[-length:]

def detect_ecb(oracle) -> tuple[bool, int]:
    """Detect an ECB oracle and its block size.

    Filler is prepended to a fixed plaintext one byte at a time. Once the filler
    is a whole block long, the last block of plaintext is the same as with no
    filler, and only ECB gives back the same last ciphertext block for it.
    A hit is confirmed with twice as much filler, so a short tail that matches
    by chance is not taken for a block size.
    """
    ciphertext = query(oracle, DETECTION_PLAINTEXT)

    for blocksize in range(1, MAX_FILLER + 1):
        new_ciphertext = query(oracle, FILLER * blocksize + DETECTION_PLAINTEXT)
        if not _tails_match(ciphertext, new_ciphertext, blocksize):
            continue

        confirm_ciphertext = query(oracle, FILLER * (2 * blocksize) + DETECTION_PLAINTEXT)
        if _tails_match(ciphertext, confirm_ciphertext, blocksize):
            log.debug('ECB detected, blocksize %d', blocksize)
            return True, blocksize

    return False, 0


#### challenge 14: hidden prefix ####
def find_prefix_length(oracle, blocksize:int = BLOCK_SIZE) -> int:
    # the first block that reacts to a change in our first byte holds the end of the prefix
    first = query(oracle, b'X')
    second = query(oracle, b'Y')
    first_different_block = -1
    for i in range(min(len(first), len(second)) // blocksize):
        if first[i*blocksize:(i+1)*blocksize] != second[i*blocksize:(i+1)*blocksize]:
            first_different_block = i
            break
    if first_different_block == -1:
        raise RuntimeError('oracle output does not depend on its input')

    # push the changing byte along until it falls out of that block
    start, end = first_different_block * blocksize, (first_different_block + 1) * blocksize
    for filler_len in range(1, blocksize + 1):
        first = query(oracle, FILLER * filler_len + b'X')
        second = query(oracle, FILLER * filler_len + b'Y')
        if first[start:end] == second[start:end]:
            prefix_len = end - filler_len
            log.debug('prefix is %d bytes', prefix_len)
            return prefix_len

    raise RuntimeError(f'could not align block {first_different_block} with {blocksize} bytes of filler')

def secret_length(oracle, blocksize:int = BLOCK_SIZE) -> int:
    """Length of what the (prefix-free) oracle appends to our input."""
    initial_length = len(query(oracle, b''))
    for i in range(1, blocksize + 1):
        if len(query(oracle, FILLER * i)) != initial_length:
            return initial_length - i
    raise RuntimeError(f'ciphertext length did not change within {blocksize} bytes of filler')


#### challenge 12: byte-at-a-time ECB decryption ####
def crack_ecb(oracle, max_len:int, trial_bytes = TRIAL_BYTES) -> bytes:
    """Recover what an ECB oracle appends to our input, one byte per round.

    max_len bounds the recoverable length and should be a multiple of the
    block size, e.g. len(oracle(b'')). Filler is sized so the next unknown byte
    is the last one of the first max_len bytes; the reference ciphertext is
    then matched against filler + recovered + every trial byte. The run stops
    at the first byte no trial matches, which is usually the second padding
    byte, so the result can carry one padding byte past the real secret.
    """
    if max_len <= 0:
        raise ValueError(f'max_len must be positive, got {max_len}')
    # every round walks the candidates again
    trial_bytes = tuple(trial_bytes)

    cracked_secret = b''
    while len(cracked_secret) < max_len:
        prefix_len = max_len - (len(cracked_secret) % max_len) - 1
        prefix = FILLER * prefix_len
        cipher_prefix = query(oracle, prefix)

        trial = bytearray(prefix + cracked_secret + b'\x00')
        for byte in trial_bytes:
            trial[-1] = byte
            ciphertext = query(oracle, bytes(trial))
            if ciphertext[:max_len] == cipher_prefix[:max_len]:
                cracked_secret += bytes([byte])
                log.debug('byte %d: %r', len(cracked_secret) - 1, bytes([byte]))
                break
        else:
            break

    log.info('recovered %d bytes', len(cracked_secret))
    return cracked_secret

def crack_ecb_oracle(oracle, trial_bytes = TRIAL_BYTES) -> bytes:
    is_ecb, blocksize = detect_ecb(oracle)
    if not is_ecb:
        raise RuntimeError('oracle does not encrypt in ECB mode')

    prefix_len = find_prefix_length(oracle, blocksize)
    if prefix_len:
        oracle = Aligned_Oracle(oracle, prefix_len, blocksize)

    length = secret_length(oracle, blocksize)
    cracked_secret = crack_ecb(oracle, len(query(oracle, b'')), trial_bytes)
    return cracked_secret[:length]


#### challenge 16: CBC bitflipping ####
COMMENT_PREFIX = b'comment1=cooking%20MCs;userdata='
COMMENT_SUFFIX = b';comment2=%20like%20a%20pound%20of%20bacon'
ADMIN_TOKEN = b';admin=true;'

class CBC_Bitflip_Oracle(Encryption_Oracle):
    """AES-CBC(prefix || msg || suffix) with ';' and '=' eaten out of msg."""

    def __init__(self, key:bytes, iv:bytes, prefix:bytes = COMMENT_PREFIX, suffix:bytes = COMMENT_SUFFIX):
        check_key(key)
        check_iv(iv)
        self.key = key
        self.iv = iv
        self.prefix = prefix
        self.suffix = suffix

    @staticmethod
    def sanitize(msg:bytes) -> bytes:
        return bytes(c for c in msg if c not in b';=')

    def encrypt(self, msg:bytes = b'') -> bytes:
        return cbc_encrypt(pkcs7(self.prefix + self.sanitize(msg) + self.suffix), self.key, self.iv)

    def decrypt(self, ciphertext:bytes) -> bytes:
        return pkcs7_unpad(cbc_decrypt(ciphertext, self.key, self.iv))

    def is_admin(self, ciphertext:bytes) -> bool:
        return ADMIN_TOKEN in self.decrypt(ciphertext)

def cbc_bitflip(oracle, prefix_len:int, target:bytes = ADMIN_TOKEN, blocksize:int = BLOCK_SIZE) -> bytes:
    """Forge a ciphertext whose plaintext holds target, past a sanitizer eating ';' and '='.

    Target goes in with the low bit of each ';' and '=' flipped, behind a
    sacrificial block of filler. Flipping the same bits in the sacrificial
    ciphertext block scrambles that block and flips them back in the next one.
    """
    if len(target) > blocksize:
        raise ValueError(f'target ({len(target)}) does not fit in one block')
    mask = bytes(1 if c in b';=' else 0 for c in target).ljust(blocksize, b'\x00')

    spacing = -prefix_len % blocksize
    ciphertext = query(oracle, FILLER * (spacing + blocksize) + bytes_xor(target, mask[:len(target)]))

    start = prefix_len + spacing
    flipped = bytes_xor(ciphertext[start:start+blocksize], mask)
    return ciphertext[:start] + flipped + ciphertext[start+blocksize:]


if __name__ == '__main__':
    logging.basicConfig(level=logging.INFO)
    rng = random.Random()

    #### challenge 11 ####
    '''
    An ECB/CBC detection oracle

    Detect the block cipher mode the function is using each time. You should end up with a piece of code that, pointed at a block box that might be encrypting ECB or CBC, tells you which one is happening.
    '''
    print("=" * 50)
    oracle = Random_Mode_Oracle(rng)
    for _ in range(rng.randint(30, 50)):
        guessed = guess_mode(oracle)
        if guessed != oracle.last_mode:
            print(f"Detection Failed. The encryption method is {oracle.last_mode}")
            break
    else:
        print(f"ECB/CBC detection test passed!")

    #### challenge 12 ####
    '''
    AES-128-ECB(your-string || unknown-string, random-key)
    It turns out: you can decrypt "unknown-string" with repeated calls to the oracle function!
    '''
    print("=" * 50)
    oracle = random_ecb_oracle(rng)
    print(f"detect_ecb: {detect_ecb(oracle)}")
    known_plaintext = crack_ecb_oracle(oracle)
    assert known_plaintext == SECRET_SUFFIX
    print("Successfully decrypted the ciphertext with 'byte-at-a-time decryption\n")
    print(f"Plaintext: {known_plaintext.decode()}")

    ##### challenge 14 #####
    '''
    AES-128-ECB(random-prefix || attacker-controlled || target-bytes, random-key)
    Same goal: decrypt the target-bytes.
    '''
    print("=" * 50)
    oracle = random_ecb_oracle(rng, with_prefix=True)
    print(f"Prefix length: {find_prefix_length(oracle)}")
    assert crack_ecb_oracle(oracle) == SECRET_SUFFIX
    print("Successfully decrypted the ciphertext behind a random prefix")

    #### challenge 16 ####
    '''
    CBC bitflipping attacks

    Modify the ciphertext (without knowledge of the AES key) to accomplish this:
    the decrypted string contains ";admin=true;"
    '''
    print("=" * 50)
    oracle = CBC_Bitflip_Oracle(rng.randbytes(16), rng.randbytes(16))
    assert not oracle.is_admin(oracle.encrypt(ADMIN_TOKEN))
    forged = cbc_bitflip(oracle, len(COMMENT_PREFIX))
    assert oracle.is_admin(forged)
    print(f"Forged plaintext: {oracle.decrypt(forged)}")
