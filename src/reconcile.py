import logging
import typing

import annotation
import cleaner
import index
import item


def find_orphaned_claims(claims: index.Indexer, nodes: index.Indexer, annotation_filter: annotation.AnnotationFilter) -> typing.List[item.ClaimItem]:
    orphans = []
    for claim in claims.list():
        if not annotation_filter.is_owned(claim.annotations):
            continue
        node_name = annotation_filter.anchor_node(claim.annotations)
        if not node_name:
            logging.debug(f"[Reaper]Claim {claim.key} has no selected node yet.")
            continue
        if nodes.get_by_key(node_name) is not None:
            logging.debug(f"[Reaper]Node {node_name} of claim {claim.key} exists.")
            continue
        logging.info(f"[Reaper]Node {node_name} of claim {claim.key} doesn't exist.")
        orphans.append(claim)
    return orphans

def reconcile_on_startup(claims: index.Indexer, nodes: index.Indexer, claim_cleaner: cleaner.Cleaner, annotation_filter: annotation.AnnotationFilter=None) -> int: #must only run after both stores synced
    annotation_filter = annotation_filter or claim_cleaner.annotation_filter
    orphans = find_orphaned_claims(claims, nodes, annotation_filter)
    if not orphans:
        logging.info("[Reaper]No orphaned claims found on startup.")
        return 0
    result = claim_cleaner.cleanup_claims(orphans)
    logging.info(f"[Reaper]Startup reconciliation cleaned up {len(orphans)} orphaned claims: {result}.")
    return len(orphans)
