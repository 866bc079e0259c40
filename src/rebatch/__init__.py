"""
rebatch: Fault-tolerant, restartable chunk-oriented batch processing.

Reads delimited record streams, transforms each record, and commits results
in bounded chunks. Every commit is a checkpoint, so a failed job resumes
where it stopped instead of starting over.
"""

__version__ = "0.1.0"
