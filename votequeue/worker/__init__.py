from votequeue.worker.consumer import TickOutcome, WorkerConsumer, WorkerState

__all__ = ['TickOutcome', 'WorkerConsumer', 'WorkerState']
