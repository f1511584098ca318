"""Tests for relforge.core.result module."""

import pytest

from relforge.core.result import Err, Ok, Result, is_err, is_ok


class TestOk:
    def test_ok_predicates(self) -> None:
        result = Ok(42)
        assert result.is_ok() is True
        assert result.is_err() is False

    def test_ok_unwrap(self) -> None:
        assert Ok(42).unwrap() == 42
        assert Ok(42).unwrap_or(0) == 42

    def test_ok_map(self) -> None:
        assert Ok(21).map(lambda x: x * 2) == Ok(42)

    def test_ok_map_err_is_identity(self) -> None:
        result = Ok(42)
        assert result.map_err(lambda e: f"wrapped: {e}") is result

    def test_ok_and_then_chains(self) -> None:
        def half(x: int) -> Result[int, str]:
            return Ok(x // 2) if x % 2 == 0 else Err("odd")

        assert Ok(8).and_then(half) == Ok(4)
        assert Ok(3).and_then(half) == Err("odd")


class TestErr:
    def test_err_predicates(self) -> None:
        result = Err("boom")
        assert result.is_ok() is False
        assert result.is_err() is True

    def test_err_unwrap_raises(self) -> None:
        with pytest.raises(ValueError, match="called unwrap on Err"):
            Err("boom").unwrap()

    def test_err_unwrap_or(self) -> None:
        assert Err("boom").unwrap_or(7) == 7

    def test_err_map_is_identity(self) -> None:
        result = Err("boom")
        assert result.map(lambda x: x) is result

    def test_err_map_err(self) -> None:
        assert Err("boom").map_err(str.upper) == Err("BOOM")

    def test_err_and_then_short_circuits(self) -> None:
        calls: list[int] = []

        def step(x: int) -> Result[int, str]:
            calls.append(x)
            return Ok(x)

        assert Err("boom").and_then(step) == Err("boom")
        assert calls == []


def test_type_guards() -> None:
    ok: Result[int, str] = Ok(1)
    err: Result[int, str] = Err("x")
    assert is_ok(ok) and not is_err(ok)
    assert is_err(err) and not is_ok(err)


def test_pattern_matching() -> None:
    def describe(result: Result[int, str]) -> str:
        match result:
            case Ok(value):
                return f"ok {value}"
            case Err(error):
                return f"err {error}"

    assert describe(Ok(1)) == "ok 1"
    assert describe(Err("no")) == "err no"
