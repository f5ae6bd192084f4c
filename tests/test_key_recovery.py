"""Tests for mfkey_function/key_recovery.py: key formatting and backend loading."""

import sys
import types

import pytest

import mfkey_function.exceptions
import mfkey_function.key_recovery


class _Crapto1Backend:
    def mfkey32(self, uid, nt0, nr0, ar0, nr1, ar1):
        return 0xFFFFFFFFFFFF

    def mfkey32v2(self, uid, nt0, nr0, ar0, nt1, nr1, ar1):
        return 0xFFFFFFFFFFFF

    def mfkey64(self, uid, nt, nr, ar, at):
        return 0xFFFFFFFFFFFF


@pytest.fixture
def fake_backend_module(monkeypatch: pytest.MonkeyPatch) -> types.ModuleType:
    """Register an importable module exposing backends in several shapes."""
    module = types.ModuleType("fake_crapto1")
    module.Crapto1Backend = _Crapto1Backend
    module.backend_instance = _Crapto1Backend()
    module.incomplete_backend = object()

    def mfkey32(uid, nt0, nr0, ar0, nr1, ar1):
        return None

    def mfkey32v2(uid, nt0, nr0, ar0, nt1, nr1, ar1):
        return None

    def mfkey64(uid, nt, nr, ar, at):
        return None

    module.mfkey32 = mfkey32
    module.mfkey32v2 = mfkey32v2
    module.mfkey64 = mfkey64

    monkeypatch.setitem(sys.modules, "fake_crapto1", module)
    return module


class TestFormatRecoveredKey:
    @pytest.mark.parametrize(
        ("key", "expected"),
        [
            (0xA0A1A2A3A4A5, "A0A1A2A3A4A5"),
            (0xFFFFFFFFFFFF, "FFFFFFFFFFFF"),
            (0x1, "000000000001"),
            (0, "000000000000"),
        ],
    )
    def test_twelve_upper_case_digits(self, key, expected):
        assert mfkey_function.key_recovery.format_recovered_key(key) == expected


class TestLoadKeyRecoveryBackend:
    @pytest.mark.parametrize("import_path", ["", "   "])
    def test_empty_path_means_no_backend(self, import_path):
        assert mfkey_function.key_recovery.load_key_recovery_backend(import_path) is None

    def test_class_is_instantiated(self, fake_backend_module):
        backend = mfkey_function.key_recovery.load_key_recovery_backend("fake_crapto1:Crapto1Backend")

        assert isinstance(backend, _Crapto1Backend)

    def test_instance_is_returned_as_is(self, fake_backend_module):
        backend = mfkey_function.key_recovery.load_key_recovery_backend("fake_crapto1:backend_instance")

        assert backend is fake_backend_module.backend_instance

    def test_module_attribute_can_be_a_module(self, fake_backend_module, monkeypatch):
        package = types.ModuleType("fake_crapto1_package")
        package.attacks = fake_backend_module
        monkeypatch.setitem(sys.modules, "fake_crapto1_package", package)

        backend = mfkey_function.key_recovery.load_key_recovery_backend("fake_crapto1_package:attacks")

        assert backend is fake_backend_module
        assert isinstance(backend, mfkey_function.key_recovery.KeyRecoveryBackend)

    @pytest.mark.parametrize("import_path", ["fake_crapto1", "fake_crapto1:", ":Crapto1Backend"])
    def test_malformed_path_rejected(self, fake_backend_module, import_path):
        with pytest.raises(mfkey_function.exceptions.KeyRecoveryBackendConfigurationError, match="package.module"):
            mfkey_function.key_recovery.load_key_recovery_backend(import_path)

    def test_missing_module_rejected(self):
        with pytest.raises(mfkey_function.exceptions.KeyRecoveryBackendConfigurationError) as exception_info:
            mfkey_function.key_recovery.load_key_recovery_backend("module_that_does_not_exist_anywhere:Backend")

        assert isinstance(exception_info.value.__cause__, ImportError)

    def test_missing_attribute_rejected(self, fake_backend_module):
        with pytest.raises(mfkey_function.exceptions.KeyRecoveryBackendConfigurationError, match="no attribute"):
            mfkey_function.key_recovery.load_key_recovery_backend("fake_crapto1:MissingBackend")

    def test_object_without_attacks_rejected(self, fake_backend_module):
        with pytest.raises(mfkey_function.exceptions.KeyRecoveryBackendConfigurationError, match="does not provide"):
            mfkey_function.key_recovery.load_key_recovery_backend("fake_crapto1:incomplete_backend")
