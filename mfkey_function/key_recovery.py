r"""
Interface to the MIFARE Classic key recovery backend.

The Crypto1 cryptanalysis (``mfkey32``, ``mfkey32v2`` and ``mfkey64``)
is performed by an external library.  This module defines the protocol
the service expects from it, loads the implementation named in the
configuration, and formats recovered keys for the API.

The backend is configured as an import path ``"package.module:attribute"``
(``MFKEY_FUNCTION_KEY_RECOVERY_BACKEND``).  The attribute may be an
object implementing ``KeyRecoveryBackend`` (a module works) or a class,
which is instantiated with no arguments.  Backend methods are
synchronous and CPU-bound; handlers run them in a worker thread.

No backend ships with the service; until one is configured the three
attack endpoints answer HTTP 503.  A typical backend wraps the
``mfkey32``, ``mfkey32v2`` and ``mfkey64`` tools built from the Proxmark3
sources (``tools/mfkey``) and is enabled with
``MFKEY_FUNCTION_KEY_RECOVERY_BACKEND=crapto1_tools:ProxmarkMfkeyTools``::

    # crapto1_tools.py
    import re
    import subprocess

    _FOUND_KEY = re.compile(r"Found Key: \[([0-9a-fA-F]{12})\]")

    class ProxmarkMfkeyTools:
        def _run(self, tool, *values):
            arguments = [tool, *(f"{value:08x}" for value in values)]
            output = subprocess.run(arguments, capture_output=True, text=True, check=True).stdout
            match = _FOUND_KEY.search(output)
            return int(match.group(1), 16) if match else None

        def mfkey32(self, uid, nt0, nr0, ar0, nr1, ar1):
            return self._run("mfkey32", uid, nt0, nr0, ar0, nr1, ar1)

        def mfkey32v2(self, uid, nt0, nr0, ar0, nt1, nr1, ar1):
            return self._run("mfkey32v2", uid, nt0, nr0, ar0, nt1, nr1, ar1)

        def mfkey64(self, uid, nt, nr, ar, at):
            return self._run("mfkey64", uid, nt, nr, ar, at)
"""

import importlib
import typing

import structlog

import mfkey_function.exceptions

logger = structlog.get_logger()

RECOVERED_KEY_HEXADECIMAL_DIGITS = 12


@typing.runtime_checkable
class KeyRecoveryBackend(typing.Protocol):
    """
    The three key recovery attacks.  Each returns the recovered 48-bit
    key, or ``None`` when no candidate matched the supplied values.
    """

    def mfkey32(self, uid: int, nt0: int, nr0: int, ar0: int, nr1: int, ar1: int) -> int | None: ...

    def mfkey32v2(
        self,
        uid: int,
        nt0: int,
        nr0: int,
        ar0: int,
        nt1: int,
        nr1: int,
        ar1: int,
    ) -> int | None: ...

    def mfkey64(self, uid: int, nt: int, nr: int, ar: int, at: int) -> int | None: ...


def format_recovered_key(key: int) -> str:
    """Render a key as twelve upper-case hexadecimal digits, zero-padded."""
    return f"{key:0{RECOVERED_KEY_HEXADECIMAL_DIGITS}X}"


def load_key_recovery_backend(import_path: str) -> KeyRecoveryBackend | None:
    """
    Resolve the configured backend.

    Args:
        import_path: ``"package.module:attribute"``, or an empty string
            when no backend is configured.

    Returns:
        The backend object, or ``None`` for an empty import path.

    Raises:
        mfkey_function.exceptions.KeyRecoveryBackendConfigurationError:
            The path is malformed, the module or attribute cannot be
            found, or the resolved object lacks the backend methods.
    """
    if not import_path.strip():
        return None

    module_name, separator, attribute_name = import_path.strip().partition(":")
    if not separator or not module_name or not attribute_name:
        raise mfkey_function.exceptions.KeyRecoveryBackendConfigurationError(
            f"Key recovery backend must be given as 'package.module:attribute', got {import_path!r}.",
        )

    try:
        module = importlib.import_module(module_name)
    except ImportError as import_error:
        raise mfkey_function.exceptions.KeyRecoveryBackendConfigurationError(
            f"Cannot import key recovery backend module {module_name!r}: {import_error}",
        ) from import_error

    try:
        backend = getattr(module, attribute_name)
    except AttributeError as attribute_error:
        raise mfkey_function.exceptions.KeyRecoveryBackendConfigurationError(
            f"Module {module_name!r} has no attribute {attribute_name!r}.",
        ) from attribute_error

    if isinstance(backend, type):
        backend = backend()

    if not isinstance(backend, KeyRecoveryBackend):
        raise mfkey_function.exceptions.KeyRecoveryBackendConfigurationError(
            f"{import_path!r} does not provide mfkey32, mfkey32v2 and mfkey64.",
        )

    logger.info("key_recovery_backend_loaded", backend=import_path)
    return backend
