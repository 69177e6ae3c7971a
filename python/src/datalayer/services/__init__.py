from .client_manager import close_data_client, get_data_client, reset_data_client

__all__ = ["get_data_client", "close_data_client", "reset_data_client"]
