"""Hash constants for the blob data service."""

SUPPORTED_ALGORITHMS = ("md5", "sha1", "sha256", "adler32")
BLOCK_SIZE = 8192  # 8KB block size for stream and file processing
CHECKSUM_SEPARATOR = ":"  # Digests are formatted as <algorithm>:<hexdigest>
