import logging
import math

import numpy as np

from blockcipher import BLOCK_SIZE, LengthMismatchError

log = logging.getLogger(__name__)

# pairwise scans are quadratic, only this many leading blocks are compared
MAX_SCAN_BLOCKS = 4096

#### helpers ####
def _as_bytes(text):
    return text.encode() if isinstance(text, str) else bytes(text)

def _block_matrix(data, blocksize, max_blocks=None):
    """Complete blocks of data as an (n, blocksize) uint8 array."""
    num_blocks = len(data) // blocksize
    if max_blocks is not None and num_blocks > max_blocks:
        log.debug('scanning %d of %d blocks', max_blocks, num_blocks)
        num_blocks = max_blocks
    raw = np.frombuffer(_as_bytes(data)[:num_blocks * blocksize], dtype=np.uint8)
    return raw.reshape(num_blocks, blocksize)

def _row_distances(blocks, i):
    """Hamming distances between block i and every later block."""
    return np.unpackbits(blocks[i] ^ blocks[i+1:], axis=1).sum(axis=1)

#### challenge 6 ####
def hamming_distance(plaintext1, plaintext2) -> int:
    plaintext1, plaintext2 = _as_bytes(plaintext1), _as_bytes(plaintext2)
    if len(plaintext1) != len(plaintext2):
        raise LengthMismatchError(f'strings not equal length: {len(plaintext1)} != {len(plaintext2)}')
    if not plaintext1:
        return 0
    diff = np.frombuffer(plaintext1, dtype=np.uint8) ^ np.frombuffer(plaintext2, dtype=np.uint8)
    return int(np.unpackbits(diff).sum())

def num_similar_blocks(data, blocksize=BLOCK_SIZE, threshold=0, max_blocks=MAX_SCAN_BLOCKS) -> int:
    """Count unordered block pairs whose hamming distance is at most threshold.

    With threshold 0 this counts identical block pairs, the ECB fingerprint.
    """
    blocks = _block_matrix(data, blocksize, max_blocks)
    return int(sum((_row_distances(blocks, i) <= threshold).sum() for i in range(len(blocks))))

def block_distance(data, blocksize=BLOCK_SIZE, max_blocks=MAX_SCAN_BLOCKS) -> float:
    blocks = _block_matrix(data, blocksize, max_blocks)
    total = 0.0
    for i in range(len(blocks)):
        total += float(((_row_distances(blocks, i) / blocksize) ** 2).sum())
    return math.sqrt(total)

def mean_block_hamming_distance(data, blocksize, max_blocks=10) -> float:
    # consecutive pairs only, normalised by blocksize
    blocks = _block_matrix(data, blocksize, max_blocks + 1)
    if len(blocks) < 2:
        raise LengthMismatchError(f'need at least two blocks of {blocksize} bytes, got {len(data)} bytes')
    distances = np.unpackbits(blocks[:-1] ^ blocks[1:], axis=1).sum(axis=1)
    return float(distances.mean()) / blocksize

def detect_block_size(data, min_size=4, max_size=40, threshold=4) -> int:
    # Pick the largest block size with similar blocks: a repeat at 16 also
    # shows up at 8 (twice), so smaller sizes alias the real one.
    best_block_size = 0
    for blocksize in range(min_size, max_size + 1):
        if num_similar_blocks(data, blocksize, threshold) > 0:
            best_block_size = blocksize
    return best_block_size

#### challenge 8 ####
def is_ecb_encrypted(ciphertext, block_size=BLOCK_SIZE) -> bool:
    if (len(ciphertext) % block_size != 0):
        return False
    return num_similar_blocks(ciphertext, block_size, 0) > 0


if __name__ == "__main__":
    #### challenge 6 ####
    '''
    The Hamming distance is just the number of differing bits. The distance between:
    this is a test
    and
    wokka wokka!!!
    is 37. Make sure your code agrees before you proceed.
    '''
    print("=" * 50)
    assert(37 == hamming_distance('this is a test', 'wokka wokka!!!'))
    print("Hamming distance: passed")

    #### challenge 8 ####
    '''
    Detect AES in ECB mode

    Remember that the problem with ECB is that it is stateless and deterministic; the same 16 byte plaintext block will always produce the same 16 byte ciphertext.
    '''
    print("=" * 50)
    from blockcipher import cbc_encrypt, ecb_encrypt
    plaintext = b'YELLOW SUBMARINE' * 4
    key, iv = b'0123456789ABCDEF', b'\x00' * 16
    for name, ciphertext in (('ECB', ecb_encrypt(plaintext, key)), ('CBC', cbc_encrypt(plaintext, key, iv))):
        print(f"{name}: is_ecb_encrypted={is_ecb_encrypted(ciphertext)}, "
              f"similar blocks={num_similar_blocks(ciphertext)}, "
              f"block distance={block_distance(ciphertext):.3f}")
