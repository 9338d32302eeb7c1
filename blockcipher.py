import logging

from Crypto.Cipher import AES
from Crypto.Util.strxor import strxor
from more_itertools import sliced

log = logging.getLogger(__name__)

BLOCK_SIZE = AES.block_size

#### errors ####
class CryptopalsError(Exception):
    pass

class ConfigurationError(CryptopalsError):
    """Key or IV the block cipher cannot be set up with."""

class PaddingError(CryptopalsError):
    """Malformed PKCS#7 padding, or a pad that cannot be expressed."""

class LengthMismatchError(CryptopalsError):
    pass

class OracleError(CryptopalsError):
    """The encryption oracle failed to produce a ciphertext."""


#### helpers ####
def bytes_xor(string1:bytes, string2:bytes) -> bytes:
    if len(string1) != len(string2):
        raise LengthMismatchError(f'cannot xor {len(string1)} bytes with {len(string2)} bytes')
    if not string1:
        return b''
    return strxor(bytes(string1), bytes(string2))

def split_bytes_by_blocksize(text:bytes, blocksize:int = BLOCK_SIZE) -> list[bytes]:
    return [bytes(block) for block in sliced(text, blocksize)]

def _whole_blocks(text:bytes, what:str) -> list[bytes]:
    if len(text) % BLOCK_SIZE:
        log.warning('%s (%d) is not a multiple of blocksize (%d), ignoring the last %d bytes',
                    what, len(text), BLOCK_SIZE, len(text) % BLOCK_SIZE)
    return [block for block in split_bytes_by_blocksize(text) if len(block) == BLOCK_SIZE]


#### challenge 9 / 15: PKCS#7 ####
def pkcs7(text:bytes, blocksize:int = BLOCK_SIZE) -> bytes:
    if not 1 <= blocksize <= 255:
        raise PaddingError(f'cannot pad to blocksize {blocksize}')
    pad:int = blocksize - (len(text) % blocksize)
    return bytes(text) + bytes([pad] * pad)

def pad_to_length(text:bytes, length:int) -> bytes:
    if length == 0:
        return bytes(text)
    diff = length - len(text)
    if diff < 0:
        raise PaddingError(f'text ({len(text)}) longer than length ({length})')
    if diff > 255:
        raise PaddingError(f'cannot pad {diff} bytes')
    return bytes(text) + bytes([diff] * diff)

def pkcs7_unpad(text:bytes, blocksize:int = BLOCK_SIZE) -> bytes:
    if not text:
        raise PaddingError('cannot unpad empty text')

    pad = text[-1]
    if pad == 0:
        raise PaddingError('invalid zero padding byte')
    if pad > blocksize:
        raise PaddingError(f'invalid padding byte: {pad}')
    if len(text) < pad:
        raise PaddingError(f'invalid padding byte: {pad}, text is only {len(text)} bytes')

    for i in range(1, pad + 1):
        if text[-i] != pad:
            raise PaddingError(f'invalid padding byte: {pad}, count: {i - 1}')
    return bytes(text[:-pad])


#### block cipher setup ####
def check_key(key:bytes) -> None:
    if len(key) < BLOCK_SIZE:
        raise ConfigurationError(f'key size must be at least {BLOCK_SIZE}, got {len(key)}')

def check_iv(iv:bytes) -> None:
    if len(iv) < BLOCK_SIZE:
        raise ConfigurationError(f'iv size must be at least {BLOCK_SIZE}, got {len(iv)}')

def new_block_cipher(key:bytes):
    """Raw AES permutation: ECB mode on whole blocks is the bare primitive."""
    check_key(key)
    try:
        return AES.new(bytes(key), AES.MODE_ECB)
    except (ValueError, TypeError) as e:
        raise ConfigurationError(f'could not initialize AES: {e}') from e


#### challenge 7 / 10: ECB and CBC ####
def ecb_encrypt(plaintext:bytes, key:bytes) -> bytes:
    ecb_cipher = new_block_cipher(key)
    return b''.join(ecb_cipher.encrypt(block) for block in _whole_blocks(plaintext, 'plaintext'))

def ecb_decrypt(ciphertext:bytes, key:bytes) -> bytes:
    ecb_cipher = new_block_cipher(key)
    return b''.join(ecb_cipher.decrypt(block) for block in _whole_blocks(ciphertext, 'ciphertext'))

def cbc_encrypt(plaintext:bytes, key:bytes, iv:bytes) -> bytes:
    check_iv(iv)
    ebc_cipher = new_block_cipher(key)

    prev = bytes(iv[:BLOCK_SIZE])
    ciphertext = b''
    for block in _whole_blocks(plaintext, 'plaintext'):
        prev = ebc_cipher.encrypt(bytes_xor(prev, block))
        ciphertext += prev

    return ciphertext

def cbc_decrypt(ciphertext:bytes, key:bytes, iv:bytes) -> bytes:
    check_iv(iv)
    ebc_cipher = new_block_cipher(key)

    # chain on the previous *ciphertext* block, not on the decrypted output
    prev = bytes(iv[:BLOCK_SIZE])
    plaintext = b''
    for block in _whole_blocks(ciphertext, 'ciphertext'):
        plaintext += bytes_xor(ebc_cipher.decrypt(block), prev)
        prev = block

    return plaintext


if __name__ == '__main__':
    logging.basicConfig(level=logging.INFO)

    #### challenge 9 ####
    '''
    Implement PKCS#7 padding

    "YELLOW SUBMARINE" padded to 20 bytes would be "YELLOW SUBMARINE\\x04\\x04\\x04\\x04"
    '''
    print("=" * 50)
    assert(pad_to_length(b'YELLOW SUBMARINE', 20) == b'YELLOW SUBMARINE\x04\x04\x04\x04')
    assert(pkcs7_unpad(b'YELLOW SUBMARINE\x04\x04\x04\x04') == b'YELLOW SUBMARINE')
    print("PCKS#7 padding verified")

    #### challenge 10 ####
    '''
    Implement CBC mode

    In CBC mode, each ciphertext block is added to the next plaintext block before the next call to the cipher core.
    The first plaintext block, which has no associated previous ciphertext block, is added to a "fake 0th ciphertext block" called the initialization vector, or IV.
    '''
    print("=" * 50)
    key, iv = b'YELLOW SUBMARINE', b'\x00' * 16
    plaintext = b'YELLOW SUBMARINE' * 4
    ciphertext = cbc_encrypt(plaintext, key, iv)
    assert(cbc_decrypt(ciphertext, key, iv) == plaintext)
    assert(ecb_decrypt(ecb_encrypt(plaintext, key), key) == plaintext)
    print(f"CBC mode implemented correctly")
    print(f"Ciphertext blocks: {[block.hex() for block in split_bytes_by_blocksize(ciphertext)]}")

    #### challenge 15 ####
    '''
    PKCS#7 padding validation

    "ICE ICE BABY\\x04\\x04\\x04\\x04" has valid padding, "ICE ICE BABY\\x05\\x05\\x05\\x05" and
    "ICE ICE BABY\\x01\\x02\\x03\\x04" do not.
    '''
    print("=" * 50)
    assert(pkcs7_unpad(b'ICE ICE BABY\x04\x04\x04\x04') == b'ICE ICE BABY')
    for bad in (b'ICE ICE BABY\x05\x05\x05\x05', b'ICE ICE BABY\x01\x02\x03\x04'):
        try:
            pkcs7_unpad(bad)
        except PaddingError as e:
            print(f"Rejected {bad}: {e}")
