"""Study memos — free-text notes attached to imaging studies.

Tiers, in the order the service consults them:
    remote metadata      one annotation per study on the catalog server
    remote embedded tags legacy copy inside an instance's private tags
    local backup         one file per study under ~/.studymemo/backup

The service entry point is `studymemo.core.MemoService`; build one with
`studymemo.core.build_service()` and share it between callers.
"""

__version__ = "0.1.0"
