"""HTTP control-plane client for pqinbox."""

from .api_client import ApiClient, encode_path_segment

__all__ = ["ApiClient", "encode_path_segment"]
