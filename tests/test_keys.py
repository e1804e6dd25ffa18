"""密钥生成测试。Key material generator tests."""

from __future__ import annotations

import tempfile
from pathlib import Path

import pytest

from dvpn.errors import KeyReadError, ToolInvocationError
from dvpn.tunnel.keys import KeyMaterialGenerator


@pytest.fixture
def generator(executor) -> KeyMaterialGenerator:
    return KeyMaterialGenerator(executor, timeout=3)


def _staging_dirs() -> set[str]:
    return {p.name for p in Path(tempfile.gettempdir()).glob("dvpn-*") if p.is_dir()}


class TestKeyMaterialGenerator:
    """密钥生成器测试类。Key generator test class."""

    def test_key_pair(self, generator, executor):
        pair = generator.generate_key_pair()

        assert len(pair.private_key) == 44
        assert len(pair.public_key) == 44
        assert pair.public_key != pair.private_key
        assert executor.commands("wg") == [("wg", "genkey"), ("wg", "pubkey")]
        assert executor.inputs[1].strip() == pair.private_key
        assert set(executor.timeouts) == {3}

    def test_every_call_is_fresh(self, generator):
        first = generator.generate_key_pair()
        second = generator.generate_key_pair()
        assert first.private_key != second.private_key
        assert generator.generate_preshared_key() != generator.generate_preshared_key()

    def test_preshared_key(self, generator, executor):
        psk = generator.generate_preshared_key()
        assert len(psk.value) == 44
        assert executor.calls == [("wg", "genpsk")]
        assert psk.value not in repr(psk)

    def test_private_key_hidden_in_repr(self, generator):
        pair = generator.generate_key_pair()
        assert pair.private_key not in repr(pair)

    def test_non_zero_exit(self, generator, executor):
        executor.fail("wg", "genkey", stderr="permission denied")
        with pytest.raises(ToolInvocationError) as excinfo:
            generator.generate_key_pair()
        assert excinfo.value.exit_code == 1
        assert "permission denied" in str(excinfo.value)

    def test_tool_cannot_start(self, generator, executor):
        executor.raise_on("wg")
        with pytest.raises(ToolInvocationError):
            generator.generate_preshared_key()

    def test_empty_output(self, generator, executor):
        executor.output("wg", "genpsk", stdout="\n")
        with pytest.raises(KeyReadError):
            generator.generate_preshared_key()

    def test_garbage_output(self, generator, executor):
        executor.output("wg", "genkey", stdout="not-a-key\n")
        with pytest.raises(KeyReadError):
            generator.generate_key_pair()
        assert executor.commands("wg", "pubkey") == []

    def test_staging_directory_removed_on_all_paths(self, generator, executor):
        before = _staging_dirs()
        generator.generate_key_pair()
        executor.fail("wg", "pubkey")
        with pytest.raises(ToolInvocationError):
            generator.generate_key_pair()
        assert _staging_dirs() == before
