from .mock_platform import MockPlatform

__all__ = ["MockPlatform"]
