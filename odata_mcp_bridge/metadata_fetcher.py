"""
Fetches the raw $metadata document from an OData service.
"""

import logging

from .client import ODataClient
from .errors import SchemaAcquisitionError
from .session import TRANSPORT_ERRORS

logger = logging.getLogger(__name__)


class MetadataFetcher:
    """Downloads the service metadata document over the client's authenticated session."""

    def __init__(self, client: ODataClient):
        self.client = client
        self.metadata_url = client.build_url('$metadata')

    async def fetch(self) -> bytes:
        logger.debug(f"Fetching metadata from {self.metadata_url}...")
        headers = {'Accept': 'application/xml, text/xml, */*'}
        try:
            response = await self.client.send('GET', self.metadata_url, headers=headers)
        except TRANSPORT_ERRORS as e:
            raise SchemaAcquisitionError(f"Could not fetch metadata from {self.metadata_url}: {e}") from e

        if response.status_code in (401, 403):
            raise SchemaAcquisitionError(
                f"Authentication failed fetching metadata (HTTP {response.status_code}). "
                "Authentication might be required or incorrect. Check credentials.",
                status_code=response.status_code,
            )
        if not 200 <= response.status_code < 300:
            raise SchemaAcquisitionError(
                f"Metadata request failed (HTTP {response.status_code}): {response.text[:500]}",
                status_code=response.status_code,
            )
        if not response.content:
            raise SchemaAcquisitionError(f"Empty metadata document received from {self.metadata_url}",
                                         status_code=response.status_code)

        logger.debug(f"Metadata fetched successfully ({len(response.content)} bytes).")
        return response.content
