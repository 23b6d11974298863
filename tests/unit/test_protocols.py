from typing import Any

from market_gateway.protocols import UpstreamClient


class TestUpstreamClientProtocol:
    def test_structural_match(self):
        class Client:
            async def get(
                self, endpoint_path: str, request_options: dict[str, Any] | None = None
            ) -> Any:
                return {}

            async def close(self) -> None:
                pass

        assert isinstance(Client(), UpstreamClient)

    def test_missing_close_does_not_match(self):
        class Client:
            async def get(self, endpoint_path, request_options=None):
                return {}

        assert not isinstance(Client(), UpstreamClient)
