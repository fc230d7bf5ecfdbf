"""Unit tests for short-code generation and the retry bound."""

import logging

import pytest

from shortlink.codegen import ALPHABET, CODEGEN_DEGRADED_TOTAL, CodeGenerator, DegradedRandomSource
from shortlink.enums import RandomSourceKind
from shortlink.errors import CodeExhausted


class BrokenRandomSource:
    kind = RandomSourceKind.STRONG

    def draw(self, alphabet: str, length: int) -> str:
        raise NotImplementedError("no os.urandom on this platform")


class ScriptedRandomSource:
    kind = RandomSourceKind.STRONG

    def __init__(self, codes: list[str]) -> None:
        self._codes = iter(codes)

    def draw(self, alphabet: str, length: int) -> str:
        return next(self._codes)


def test_generate_default_length_and_alphabet() -> None:
    generator = CodeGenerator()
    for _ in range(200):
        code = generator.generate()
        assert len(code) == 6
        assert all(c in ALPHABET for c in code)


def test_alphabet_is_62_alphanumerics() -> None:
    assert len(set(ALPHABET)) == 62
    assert ALPHABET.isalnum()


def test_generate_uniqueness() -> None:
    generator = CodeGenerator()
    codes = {generator.generate() for _ in range(1000)}
    # 62^6 possibilities; 1000 draws colliding would point at a broken source
    assert len(codes) == 1000


def test_degraded_source_used_and_reported(caplog: pytest.LogCaptureFixture) -> None:
    generator = CodeGenerator(strong=BrokenRandomSource(), degraded=DegradedRandomSource())
    before = CODEGEN_DEGRADED_TOTAL._value.get()

    with caplog.at_level(logging.WARNING, logger="shortlink.codegen"):
        code = generator.generate()

    assert len(code) == 6
    assert all(c in ALPHABET for c in code)
    assert CODEGEN_DEGRADED_TOTAL._value.get() == before + 1
    assert any("degraded" in record.getMessage() for record in caplog.records)


def test_degraded_source_reports_every_use(caplog: pytest.LogCaptureFixture) -> None:
    generator = CodeGenerator(strong=BrokenRandomSource())

    with caplog.at_level(logging.WARNING, logger="shortlink.codegen"):
        for _ in range(3):
            generator.generate()

    assert len([r for r in caplog.records if r.levelno == logging.WARNING]) == 3


@pytest.mark.asyncio
async def test_generate_unique_skips_taken_codes() -> None:
    generator = CodeGenerator(strong=ScriptedRandomSource(["aaaaaa", "bbbbbb", "cccccc"]))
    taken = {"aaaaaa", "bbbbbb"}

    async def exists(code: str) -> bool:
        return code in taken

    assert await generator.generate_unique(exists) == "cccccc"


@pytest.mark.asyncio
async def test_generate_unique_gives_up_after_bound() -> None:
    generator = CodeGenerator(max_attempts=5)
    calls: list[str] = []

    async def exists(code: str) -> bool:
        calls.append(code)
        return True

    with pytest.raises(CodeExhausted) as excinfo:
        await generator.generate_unique(exists)

    assert len(calls) == 5
    assert excinfo.value.attempts == 5
