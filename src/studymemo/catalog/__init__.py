"""Remote catalog tiers.

    client.py    aiohttp transport, CatalogError
    probe.py     reachability check
    resolver.py  StudyInstanceUID → catalog study id
    metadata.py  preferred channel: study metadata value
    embedded.py  legacy channel: memo inside instance tags
"""
