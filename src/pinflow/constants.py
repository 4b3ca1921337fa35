"""Static defaults for the resolver."""
from __future__ import annotations

DEFAULT_INDEX = "https://pypi.org/pypi"

DEFAULT_TIMEOUT = 30
USER_AGENT = "pinflow/0.1"

DEFAULT_HASH_ALGORITHM = "sha256"
SUPPORTED_HASH_ALGORITHMS = ("sha256", "sha384", "sha512", "blake2b_256", "md5")

DEFAULT_FETCH_WORKERS = 8

WHEEL_SUFFIX = ".whl"
SDIST_SUFFIXES = (".tar.gz", ".zip", ".tar.bz2", ".tgz")
