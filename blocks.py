"""
Block lookups over ``blocks_raw``
"""

import logging

from exceptions import BlockNotFound
from filters import Eq
from models import Block, PaginatedResponse
from postgrest_client import PostgRESTClient

logger = logging.getLogger(__name__)

BLOCKS_TABLE = "blocks_raw"


class BlockService:
    """Paginated block lists are always fresh; single blocks are TTL cached"""

    def __init__(self, client: PostgRESTClient):
        self.client = client

    def get_blocks(self, limit: int = 20, offset: int = 0) -> PaginatedResponse:
        result = self.client.query(
            BLOCKS_TABLE, order="id.desc", limit=limit, offset=offset, count=True
        )
        blocks = [Block.from_row(row) for row in result.rows]
        total = result.total if result.total is not None else len(blocks)
        return PaginatedResponse.build(blocks, total, limit, offset)

    def get_block(self, height: int) -> Block:
        """
        Get block by height

        Raises:
            BlockNotFound: no block stored at this height
        """

        def fetch():
            return self.client.query(BLOCKS_TABLE, filters=[Eq("id", height)]).first()

        row = self.client.fetch_cached(f"block:{height}", fetch)
        if row is None:
            raise BlockNotFound(height)
        return Block.from_row(row)

    def get_latest_block(self) -> Block:
        row = self.client.query(BLOCKS_TABLE, order="id.desc", limit=1).first()
        if row is None:
            raise BlockNotFound("latest")
        return Block.from_row(row)
