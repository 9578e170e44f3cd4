"""Google Ads client construction for conversion uploads."""

import logging
from typing import Optional
from google.ads.googleads.client import GoogleAdsClient
from conversion_worker.config import GoogleAdsConfig

logger = logging.getLogger(__name__)


def initialize_client(config: GoogleAdsConfig) -> GoogleAdsClient:
    """Build one Google Ads client per process.

    The client holds the OAuth2 refresh-token credentials and refreshes the
    access token on its own; a refresh failure surfaces as an exception from
    the upload call that needed the token.
    """

    client_config = {
        "developer_token": config.developer_token,
        "refresh_token": config.refresh_token,
        "client_id": config.client_id,
        "client_secret": config.client_secret,
        "login_customer_id": config.login_customer_id,
        "use_proto_plus": config.use_proto_plus,
    }
    version: Optional[str] = config.api_version or None

    try:
        client = GoogleAdsClient.load_from_dict(client_config, version=version)
    except Exception as e:
        logger.error(f"Failed to initialize Google Ads client (login customer {config.login_customer_id}): {e}")
        raise

    logger.info(
        f"Google Ads client ready for login customer {config.login_customer_id} "
        f"(API version: {version or 'library default'})"
    )
    return client
