"""Port manager configuration."""

from pydantic_settings import BaseSettings


MANAGED_PORT_TAG = "cah-loadbalancer.k8s.cloudandheat.com/managed"
MANAGED_PORT_DESCRIPTION = "Managed by cah-loadbalancer"


class Settings(BaseSettings):
    """Port manager settings loaded from environment variables."""

    # Target networking
    subnet_id: str = ""  # Subnet the managed ports get their fixed IP from
    floating_ip_network_id: str = ""  # External network floating IPs are allocated on
    use_floating_ips: bool = False

    # Tagged resource cache
    port_cache_ttl: float = 30.0  # seconds

    # Ownership marking
    managed_tag: str = MANAGED_PORT_TAG
    managed_description: str = MANAGED_PORT_DESCRIPTION

    # Network API connection
    # The token is issued externally; session handling is not done here.
    network_endpoint: str = "http://localhost:9696"
    auth_token: str = ""
    request_timeout: float = 30.0
    page_size: int = 100  # Items per list page (0 disables the limit parameter)

    # HTTP service
    service_host: str = "0.0.0.0"
    service_port: int = 8010

    # Logging configuration
    log_format: str = "json"  # "json" or "text"
    log_level: str = "INFO"

    class Config:
        env_prefix = "LBNET_"


settings = Settings()
