"""Tests for imagepub.core.errors module."""

from imagepub.core.errors import ErrorCode


class TestErrorCode:
    def test_values_are_stable(self) -> None:
        """Exit codes are part of the CLI contract."""
        assert ErrorCode.OK == 0
        assert ErrorCode.USER_ERROR == 1
        assert ErrorCode.ENV_ERROR == 2
        assert ErrorCode.BUILD_ERROR == 3
        assert ErrorCode.NETWORK_ERROR == 4
        assert ErrorCode.IO_ERROR == 5

    def test_str(self) -> None:
        assert str(ErrorCode.NETWORK_ERROR) == "network error"

    def test_int_conversion(self) -> None:
        assert int(ErrorCode.ENV_ERROR) == 2
