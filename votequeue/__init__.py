# votequeue: vote intake, queue worker and live results

__version__ = "0.1.0"
