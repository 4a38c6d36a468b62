"""GraphQL documents sent to the chain node.

Both queries select the same block fields so a head block and a paged block
parse through one [Block.from_node()][chainsync.models.block.Block.from_node].
"""

_BLOCK_FIELDS = """
    id
    height
    header {
        daHeight
        time
    }
    transactions {
        id
    }
"""

LATEST_BLOCK_QUERY = f"""
query LatestBlock {{
    chain {{
        latestBlock {{{_BLOCK_FIELDS}}}
    }}
}}
"""

BLOCKS_QUERY = f"""
query Blocks($first: Int, $after: String) {{
    blocks(first: $first, after: $after) {{
        nodes {{{_BLOCK_FIELDS}}}
        pageInfo {{
            endCursor
            hasNextPage
        }}
    }}
}}
"""
