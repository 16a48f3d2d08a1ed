"""Tests for imagepub.core.result module."""

import pytest

from imagepub.core.result import Err, Ok, Result


class TestOk:
    """Tests for Ok type."""

    def test_create_ok(self) -> None:
        result = Ok(42)
        assert result.value == 42

    def test_ok_repr(self) -> None:
        assert repr(Ok("sha256:abc")) == "Ok('sha256:abc')"

    def test_ok_frozen(self) -> None:
        result = Ok(42)
        with pytest.raises(AttributeError):
            result.value = 0  # type: ignore[misc]


class TestErr:
    """Tests for Err type."""

    def test_create_err(self) -> None:
        assert Err("boom").error == "boom"

    def test_err_repr(self) -> None:
        assert repr(Err("boom")) == "Err('boom')"

    def test_err_equality(self) -> None:
        assert Err("a") == Err("a")
        assert Err("a") != Err("b")
        assert Err(1) != Ok(1)


def test_pattern_matching() -> None:
    def describe(result: Result[int, str]) -> str:
        match result:
            case Ok(value):
                return f"ok {value}"
            case Err(error):
                return f"err {error}"

    assert describe(Ok(3)) == "ok 3"
    assert describe(Err("nope")) == "err nope"


def test_isinstance_narrows() -> None:
    result: Result[int, str] = Err("x")
    assert isinstance(result, Err)
    assert not isinstance(result, Ok)
