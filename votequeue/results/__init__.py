from votequeue.results.broadcaster import ResultsBroadcaster, collect_scores

__all__ = ["ResultsBroadcaster", "collect_scores"]
